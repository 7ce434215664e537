import time

from c2s.MODELS.generator_options import GeneratorOptions
from c2s.MODELS.unit_model import Project
from c2s.PARSERS.compose_parser import ComposeParser
from c2s.RESOLVERS.generator import Generator


def large_compose(count):
    content = "services:\n"
    for i in range(count):
        content += f"  service_{i}:\n"
        content += f"    image: image_{i}\n"
        content += f"    environment:\n"
        content += f"      - VAR_{i}=VALUE_{i}\n"
        if i:
            content += f"    depends_on: [service_{i - 1}]\n"
    return content


def test_large_config_parsing():
    parser = ComposeParser(context={})
    content = large_compose(1000)

    start_time = time.time()
    project = parser.parse_from_string(content)
    end_time = time.time()

    assert len(project.services) == 1000
    print(f"Parsed 1000 services in {end_time - start_time:.2f}s")


def test_large_dependency_chain():
    """
    Resolves a 500 service dependency chain without hitting recursion limits.
    """
    project = ComposeParser(context={}).parse_from_string(large_compose(500))
    config = Generator(GeneratorOptions(project=Project(name="proj"))).run(project)

    assert len(config.containers) == 500
    last = {c.name: c for c in config.containers}["proj-service_499"]
    assert "podman-proj-service_498.service" in last.relations.after
    assert "podman-network-proj-default.service" in last.relations.requires
