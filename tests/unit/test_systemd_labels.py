import pytest

from c2s.errors import MalformedLabelError, UnsupportedValueError
from c2s.MODELS.unit_model import Container, ContainerRuntime, LabelOverride
from c2s.RESOLVERS.systemd_labels import apply_overrides, parse_labels, parse_systemd_value


@pytest.mark.parametrize("value, expected", [
    ("true", True),
    ("yes", True),
    ("off", False),
    ("a.service, b.service", ["a.service", "b.service"]),
    ("10", 10),
    ("1", 1),
    ("100ms", "100ms"),
    ("  padded  ", "padded"),
])
def test_parse_systemd_value(value, expected):
    assert parse_systemd_value(value) == expected


def test_parse_labels():
    parsed = parse_labels("web", {
        "c2s.systemd.unit.After": "foo.service",
        "c2s.systemd.service.RuntimeMaxSec": "100",
        "c2s.settings.autoStart": "false",
        "app": "x",
    })
    assert parsed.labels == {"app": "x"}
    assert parsed.auto_start is False
    assert parsed.overrides == [
        LabelOverride(section="service", key="RuntimeMaxSec", value=100),
        LabelOverride(section="unit", key="After", value="foo.service"),
    ]


def test_parse_labels_without_overrides():
    parsed = parse_labels("web", {"com.example": "1"})
    assert parsed.labels == {"com.example": "1"}
    assert parsed.overrides == []
    assert parsed.auto_start is None


@pytest.mark.parametrize("labels", [
    {"c2s.unknown": "x"},
    {"c2s.systemd.unit": "x"},
    {"c2s.settings.autoStart": "yes"},
    {"c2s.systemd.service.RuntimeMaxSec": "10\nExecStartPre=/bin/true"},
])
def test_malformed_labels(labels):
    with pytest.raises(MalformedLabelError):
        parse_labels("web", labels)


def test_unsupported_section():
    with pytest.raises(UnsupportedValueError) as exc:
        parse_labels("web", {"c2s.systemd.install.WantedBy": "multi-user.target"})
    assert exc.value.value == "install"


def test_apply_overrides():
    c = Container(runtime=ContainerRuntime.PODMAN, name="web", service_name="web", image="nginx")
    c.relations.add("after", "podman-db.service")
    c.systemd.overrides = [
        LabelOverride(section="service", key="RuntimeMaxSec", value=100),
        LabelOverride(section="unit", key="After", value="foo.service"),
        LabelOverride(section="unit", key="Requires", value=["a.service", "b.service"]),
        LabelOverride(section="unit", key="StartLimitBurst", value=5),
        LabelOverride(section="unit", key="StartLimitIntervalSec", value="infinity"),
        LabelOverride(section="unit", key="Description", value="My web"),
    ]
    apply_overrides(c)

    assert c.relations.after == ["foo.service", "podman-db.service"]
    assert c.relations.requires == ["a.service", "b.service"]
    assert c.systemd.start_limit_burst == 5
    assert c.systemd.start_limit_interval_sec == "infinity"
    assert c.systemd.unit == {"Description": "My web"}
    assert c.systemd.service == {"RuntimeMaxSec": 100}
