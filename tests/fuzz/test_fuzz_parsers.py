import random
import string

import pytest
import yaml

from c2s.errors import ResolutionError
from c2s.MODELS.generator_options import GeneratorOptions
from c2s.PARSERS.compose_parser import ComposeParser, parse_port, parse_volume
from c2s.PARSERS.env_parser import EnvParser
from c2s.RESOLVERS.generator import Generator
from c2s.RESOLVERS.systemd_labels import parse_systemd_value
from c2s.UTILS.string_interpolation import EnvironmentInterpolator

def random_string(length, alphabet=string.printable):
    return ''.join(random.choice(alphabet) for _ in range(length))

def test_fuzz_compose_parser():
    parser = ComposeParser(context={})
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        try:
            # Random junk is rarely valid YAML; it must fail with a parse error, not crash
            parser.parse_from_string(content)
        except (yaml.YAMLError, ValueError, TypeError, AttributeError, KeyError):
            pass

def test_fuzz_env_parser():
    parser = EnvParser()
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        env = parser.parse_from_string(content)
        assert all(isinstance(v, str) for v in env.values())

def test_fuzz_interpolation():
    alphabet = string.ascii_letters + "${}:-+?_ "
    for _ in range(200):
        template = random_string(random.randint(0, 50), alphabet)
        try:
            EnvironmentInterpolator.interpolate(template, {"A": "1", "B": ""})
        except ResolutionError:
            # ${VAR?err} on an unset variable
            pass

def test_fuzz_short_syntax():
    alphabet = string.ascii_letters + string.digits + ":/.[]"
    for _ in range(200):
        spec = random_string(random.randint(1, 30), alphabet)
        for parse in (parse_port, parse_volume):
            try:
                parse(spec)
            except ValueError:
                pass

def test_fuzz_systemd_values():
    for _ in range(100):
        value = random_string(random.randint(0, 30))
        assert parse_systemd_value(value) is not None

@pytest.mark.parametrize("restart", ["always", "no", "on-failure:2", "unless-stopped"])
def test_generator_is_stable_under_service_order(restart):
    names = [f"svc{i}" for i in range(8)]
    services = {}
    for i, name in enumerate(names):
        services[name] = {
            'image': f'image-{i}',
            'restart': restart,
            'depends_on': names[:i][-2:],
            'environment': {f'VAR_{j}': str(j) for j in range(5)},
        }
    outputs = set()
    for _ in range(5):
        shuffled = list(services.items())
        random.shuffle(shuffled)
        content = yaml.safe_dump({'services': dict(shuffled)}, sort_keys=False)
        project = ComposeParser(context={}).parse_from_string(content)
        outputs.add(Generator(GeneratorOptions()).run(project).model_dump_json())
    assert len(outputs) == 1

def test_edge_cases_parsers():
    compose_parser = ComposeParser(context={})

    # Empty string
    assert compose_parser.parse_from_string("").services == {}

    # Only whitespace
    assert compose_parser.parse_from_string("   \n   \n").services == {}

    # Very long value
    project = compose_parser.parse_from_string("services:\n  web:\n    image: " + "a" * 10000)
    assert len(project.services['web'].image) == 10000

    # Many services
    content = "services:\n" + "".join(f"  s{i}:\n    image: img\n" for i in range(200))
    assert len(compose_parser.parse_from_string(content).services) == 200
