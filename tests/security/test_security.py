import pytest

from c2s.CONVERTERS.to_systemd import SystemdConverter
from c2s.MODELS.generator_options import GeneratorOptions
from c2s.MODELS.unit_model import Project
from c2s.PARSERS.compose_parser import ComposeParser
from c2s.RESOLVERS.generator import Generator

INJECTION = "x; touch /tmp/injected"


def render(content):
    compose_project = ComposeParser(context={}).parse_from_string(content)
    config = Generator(GeneratorOptions(project=Project(name="proj"))).run(compose_project)
    return SystemdConverter(config).render()


def test_command_injection_in_environment():
    """
    An environment value with shell syntax must stay a single ExecStart= word.
    """
    files = render(f"""
services:
  web:
    image: nginx
    environment:
      EVIL: "{INJECTION}"
""")
    unit = files["podman-proj-web.service"]
    assert f'"--env=EVIL={INJECTION}"' in unit


def test_command_injection_in_network_options():
    """
    Network options end up inside a /bin/sh -c script and must be shell-quoted.
    """
    files = render(f"""
services:
  web:
    image: nginx
    networks: [backend]
networks:
  backend:
    driver_opts:
      o: "{INJECTION}"
""")
    unit = files["podman-network-proj-backend.service"]
    assert f"'--opt=o={INJECTION}'" in unit


def test_specifiers_are_escaped():
    """
    systemd specifiers in a command must not be expanded by systemd.
    """
    files = render("""
services:
  web:
    image: nginx
    command: ["echo", "%h"]
""")
    assert "echo %%h" in files["podman-proj-web.service"]


def test_path_traversal_parse():
    """
    A missing compose file is reported, never silently treated as empty.
    """
    parser = ComposeParser(context={})
    with pytest.raises(FileNotFoundError):
        parser.parse("non_existent_file_12345.yml")


def test_multiline_value_stays_on_one_line():
    """
    A newline in an environment value must not start a new unit directive.
    """
    files = render("""
services:
  web:
    image: nginx
    environment:
      CERT: "line1\\nExecStartPre=/bin/touch /tmp/injected"
""")
    unit = files["podman-proj-web.service"]
    assert not any(line.startswith("ExecStartPre=/bin/touch") for line in unit.splitlines())
    assert '"--env=CERT=line1\\nExecStartPre=/bin/touch /tmp/injected"' in unit
