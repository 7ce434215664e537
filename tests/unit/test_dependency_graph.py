# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for the dependency graph builder.
"""
import json
import subprocess

import pytest

from c2s.errors import DependencyCycleError, MissingInputError, UnresolvedReferenceError
from c2s.MODELS.generator_options import GeneratorOptions
from c2s.MODELS.unit_model import Container, ContainerRuntime, LabelOverride, Network, Project, Volume
from c2s.RESOLVERS import dependency_graph
from c2s.RESOLVERS.dependency_graph import (
    DependencyGraphBuilder,
    SystemctlMountProvider,
    resolve_start_order,
)

PODMAN = ContainerRuntime.PODMAN
ROOT = "podman-compose-proj-root.target"


class FakeMountProvider:
    """Mount provider backed by a fixed table of mount points."""

    def __init__(self, mounts):
        self.mounts = mounts

    def find_mount_for_path(self, path):
        for mount_point in sorted(self.mounts, key=len, reverse=True):
            if path == mount_point or path.startswith(mount_point + "/"):
                return self.mounts[mount_point]
        return None


def options(**kwargs):
    return GeneratorOptions(project=Project(name="proj"), **kwargs)


def container(name, **kwargs):
    return Container(runtime=PODMAN, name=name, service_name=name, image="nginx", **kwargs)


class TestDependencyGraphBuilder:
    """Tests for DependencyGraphBuilder."""

    def test_depends_on_edge_direction(self):
        """Test that B depending on A orders B after A, not the reverse."""
        a = container("proj-a")
        b = container("proj-b", depends_on=["proj-a"])
        DependencyGraphBuilder(options()).build([a, b], [], [])

        assert "podman-proj-a.service" in b.relations.after
        assert "podman-proj-a.service" in b.relations.requires
        assert "podman-proj-b.service" not in a.relations.after
        assert "podman-proj-b.service" not in a.relations.requires

    def test_uphold(self):
        """Test that the dependent is upheld by its dependency on new systemd."""
        a = container("proj-a")
        b = container("proj-b", depends_on=["proj-a"])
        DependencyGraphBuilder(options(systemd_version=252)).build([a, b], [], [])

        assert b.relations.upheld_by == ["podman-proj-a.service"]
        assert a.relations.upheld_by == []

    def test_no_uphold_on_old_systemd(self):
        """Test that uphold edges need systemd 249."""
        a = container("proj-a")
        b = container("proj-b", depends_on=["proj-a"])
        DependencyGraphBuilder(options(systemd_version=248)).build([a, b], [], [])
        assert b.relations.upheld_by == []

    def test_network_peer(self):
        """Test that a network peer becomes an implicit dependency without uphold."""
        vpn = container("proj-vpn")
        app = container("proj-app", network_peer="proj-vpn")
        DependencyGraphBuilder(options(systemd_version=252)).build([app, vpn], [], [])

        assert app.depends_on == ["proj-vpn"]
        assert "podman-proj-vpn.service" in app.relations.requires
        assert app.relations.upheld_by == []

    def test_resources_and_root_target(self):
        """Test network, volume and root target edges."""
        web = container("proj-web", networks=["proj-front", "shared"], volumes={"/data": "data:/data:rw"})
        front = Network(runtime=PODMAN, name="proj-front", original_name="front")
        data = Volume(runtime=PODMAN, name="data", original_name="data")
        DependencyGraphBuilder(options()).build([web], [front], [data])

        assert web.relations.after == ["podman-network-proj-front.service", "podman-volume-data.service"]
        assert web.relations.requires == web.relations.after
        assert web.relations.part_of == [ROOT]
        assert web.relations.wanted_by == [ROOT]
        for resource in (front, data):
            assert resource.relations.part_of == [ROOT]
            assert resource.relations.wanted_by == [ROOT]

    def test_root_target_disabled(self):
        """Test that no root target edges exist when it is disabled."""
        web = container("proj-web")
        DependencyGraphBuilder(options(create_root_target=False)).build([web], [], [])
        assert web.relations.part_of == []
        assert web.relations.wanted_by == []

    def test_mounts(self):
        """Test that bind sources and volume devices wait for their mounts."""
        provider = FakeMountProvider({"/mnt/data": "mnt-data.mount", "/mnt/media": "mnt-media.mount"})
        web = container(
            "proj-web",
            volumes={"/app": "/mnt/data/app:/app:rw", "/srv": "/srv:/srv:rw"},
        )
        media = Volume(runtime=PODMAN, name="media", original_name="media", driver="local",
                       driver_opts={"device": "/mnt/media/movies"})
        DependencyGraphBuilder(options(check_systemd_mounts=True), provider).build([web], [], [media])

        assert "mnt-data.mount" in web.relations.after
        assert "mnt-data.mount" in web.relations.requires
        assert web.relations.requires_mounts_for == ["/mnt/data/app"]
        assert "mnt-media.mount" in media.relations.requires
        assert media.requires_mounts_for == ["/mnt/media/movies"]

    def test_mounts_not_checked_by_default(self):
        """Test that the mount provider is only used on request."""
        provider = FakeMountProvider({"/mnt/data": "mnt-data.mount"})
        web = container("proj-web", volumes={"/app": "/mnt/data/app:/app:rw"})
        DependencyGraphBuilder(options(), provider).build([web], [], [])
        assert web.relations.requires_mounts_for == []

    def test_cycle(self):
        """Test that services depending on each other are rejected."""
        a = container("proj-a", depends_on=["proj-b"])
        b = container("proj-b", depends_on=["proj-a"])
        with pytest.raises(DependencyCycleError):
            DependencyGraphBuilder(options()).build([a, b], [], [])

    def test_dangling_dependency(self):
        """Test that a dependency on a container that is not generated fails."""
        web = container("proj-web", depends_on=["proj-ghost"])
        with pytest.raises(UnresolvedReferenceError):
            DependencyGraphBuilder(options()).build([web], [], [])

    def test_overrides_applied_last(self):
        """Test that label overrides are unioned after the structural edges."""
        web = container("proj-web")
        web.systemd.overrides = [LabelOverride(section="unit", key="After", value="foo.service")]
        DependencyGraphBuilder(options()).build([web], [], [])
        assert web.relations.after == ["foo.service"]
        assert web.relations.part_of == [ROOT]

    def test_no_dangling_references(self):
        """Test that every generated edge points at a generated unit."""
        a = container("proj-a", networks=["proj-net"])
        b = container("proj-b", depends_on=["proj-a"], networks=["proj-net"])
        net = Network(runtime=PODMAN, name="proj-net", original_name="net")
        DependencyGraphBuilder(options(systemd_version=252)).build([a, b], [net], [])

        known = {a.unit, b.unit, net.unit, ROOT}
        for record in (a, b, net):
            assert record.relations.units() <= known


def test_resolve_start_order():
    order = resolve_start_order({
        "web": ["db", "cache"],
        "db": [],
        "cache": ["db"],
        "worker": ["host.mount"],
    })
    assert order.index("db") < order.index("cache") < order.index("web")
    assert "host.mount" not in order


def test_resolve_start_order_cycle():
    with pytest.raises(DependencyCycleError, match="a -> b -> a"):
        resolve_start_order({"a": ["b"], "b": ["a"]})


def test_resolve_start_order_self_dependency():
    with pytest.raises(DependencyCycleError, match="a -> a"):
        resolve_start_order({"a": ["a"]})


def test_resolve_start_order_long_chain():
    graph = {f"s{i}": [f"s{i - 1}"] if i else [] for i in range(5000)}
    order = resolve_start_order(graph)
    assert order == [f"s{i}" for i in range(5000)]


class TestSystemctlMountProvider:
    """Tests for SystemctlMountProvider."""

    UNITS = [
        {"unit": "mnt.mount", "active": "active", "description": "/mnt"},
        {"unit": "mnt-data.mount", "active": "active", "description": "/mnt/data"},
        {"unit": "mnt-data-old.mount", "active": "inactive", "description": "/mnt/data/old"},
        {"unit": "mnt-database.mount", "active": "active", "description": "/mnt/database"},
        {"unit": "-.mount", "active": "active", "description": "Root Mount"},
    ]

    def test_longest_active_prefix(self, monkeypatch):
        """Test that the most specific active mount wins."""
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(self.UNITS), stderr="")

        monkeypatch.setattr(dependency_graph.subprocess, "run", fake_run)
        provider = SystemctlMountProvider()

        assert provider.find_mount_for_path("/mnt/data/app") == "mnt-data.mount"
        assert provider.find_mount_for_path("/mnt/data/old/x") == "mnt-data.mount"
        assert provider.find_mount_for_path("/mnt/database/x") == "mnt-database.mount"
        assert provider.find_mount_for_path("/mnt/other") == "mnt.mount"
        assert provider.find_mount_for_path("/srv") is None
        assert calls == [["systemctl", "list-units", "--type=mount", "--output=json"]]

    def test_systemctl_failure(self, monkeypatch):
        """Test that a missing systemctl is reported."""
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError("systemctl")

        monkeypatch.setattr(dependency_graph.subprocess, "run", fake_run)
        with pytest.raises(MissingInputError):
            SystemctlMountProvider().find_mount_for_path("/mnt")
