import os

import pytest
import yaml

from c2s.PARSERS.compose_parser import ComposeParser, build_environment, parse_port, parse_volume


def test_parse(tmp_path):
    compose_content = {
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['8080:80', '127.0.0.1::443/tcp'],
                'environment': {
                    'DEBUG': True,
                    'UNSET': None,
                },
                'restart': 'always',
                'depends_on': ['db'],
            },
            'db': {
                'image': 'postgres:13',
                'volumes': [
                    'db_data:/var/lib/postgresql/data',
                    './init:/docker-entrypoint-initdb.d:ro,z',
                ],
            }
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    parser = ComposeParser(context={})
    config = parser.parse(str(compose_file))

    assert config.working_dir == str(tmp_path)
    web = config.services['web']
    assert web.image == 'nginx:latest'
    assert [p.to_port_string() for p in web.ports] == ['8080:80', '127.0.0.1::443/tcp']
    assert web.environment == {'DEBUG': 'true', 'UNSET': None}
    assert web.restart == 'always'
    assert list(web.depends_on) == ['db']
    assert web.depends_on['db'].condition == 'service_started'

    assert 'db_data' in config.volumes
    db = config.services['db']
    assert db.volumes[0].type == 'volume'
    assert db.volumes[0].source == 'db_data'
    assert db.volumes[0].target == '/var/lib/postgresql/data'
    assert db.volumes[1].type == 'bind'
    assert db.volumes[1].options() == ['ro', 'z']


def test_services_join_default_network():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: nginx
  worker:
    image: busybox
    network_mode: host
""")
    assert list(config.services['web'].networks) == ['default']
    assert config.services['worker'].networks == {}
    assert list(config.networks) == ['default']


def test_parse_merges_files(tmp_path):
    base = tmp_path / "docker-compose.yml"
    base.write_text("""
services:
  web:
    image: nginx:1.25
    environment:
      A: "1"
      B: "2"
""")
    override = tmp_path / "docker-compose.override.yml"
    override.write_text("""
services:
  web:
    image: nginx:1.27
    environment:
      B: "3"
""")
    config = ComposeParser(context={}).parse([str(base), str(override)])
    web = config.services['web']
    assert web.image == 'nginx:1.27'
    assert web.environment == {'A': '1', 'B': '3'}


def test_parse_interpolates_variables():
    parser = ComposeParser(context={'TAG': '1.2'})
    config = parser.parse_from_string("""
services:
  web:
    image: nginx:${TAG}
    command: echo $$HOME ${MISSING:-fallback}
""")
    web = config.services['web']
    assert web.image == 'nginx:1.2'
    assert web.command == ['echo', '$HOME', 'fallback']


def test_interpolated_value_keeps_hash():
    parser = ComposeParser(context={'PASSWORD': 'abc #def'})
    config = parser.parse_from_string("""
services:
  db:
    image: postgres
    environment:
      PASSWORD: ${PASSWORD}
""")
    assert config.services['db'].environment == {'PASSWORD': 'abc #def'}


def test_interpolated_value_cannot_add_keys():
    parser = ComposeParser(context={'TAG': 'latest\n    privileged: true'})
    config = parser.parse_from_string("""
services:
  web:
    image: nginx:${TAG}
""")
    web = config.services['web']
    assert web.image == 'nginx:latest\n    privileged: true'
    assert web.privileged is False


def test_variables_in_comments_are_ignored():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    # token: ${TOKEN:?TOKEN is required}
    image: nginx
""")
    assert config.services['web'].image == 'nginx'


def test_interpolated_booleans():
    parser = ComposeParser(context={'PRIVILEGED': 'false', 'INIT': 'true'})
    config = parser.parse_from_string("""
services:
  web:
    image: nginx
    privileged: ${PRIVILEGED}
    init: ${INIT}
""")
    web = config.services['web']
    assert web.privileged is False
    assert web.init is True


def test_unquoted_restart_no():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: nginx
    restart: no
""")
    assert config.services['web'].restart == 'no'


def test_env_files_are_made_absolute(tmp_path):
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: nginx
    env_file:
      - .env
      - path: conf/extra.env
""", working_dir=str(tmp_path))
    assert config.services['web'].env_file == [
        os.path.join(str(tmp_path), '.env'),
        os.path.join(str(tmp_path), 'conf', 'extra.env'),
    ]


def test_legacy_external_name():
    config = ComposeParser(context={}).parse_from_string("""
networks:
  shared:
    external:
      name: real-net
volumes:
  data:
    external: true
""")
    assert config.networks['shared'].external is True
    assert config.networks['shared'].name == 'real-net'
    assert config.volumes['data'].external is True


def test_parse_service_fields():
    config = ComposeParser(context={}).parse_from_string("""
services:
  app:
    image: app
    user: 1000
    extra_hosts:
      - somehost:162.242.195.82
    sysctls:
      - net.core.somaxconn=1024
    labels:
      com.example.enabled: true
    healthcheck:
      test: curl -f http://localhost || exit 1
    deploy:
      restart_policy:
        condition: on-failure
        max_attempts: 3
        window: 120s
      resources:
        limits:
          cpus: '0.5'
          memory: 50M
""")
    app = config.services['app']
    assert app.user == '1000'
    assert app.extra_hosts == {'somehost': '162.242.195.82'}
    assert app.sysctls == {'net.core.somaxconn': '1024'}
    assert app.labels == {'com.example.enabled': 'true'}
    assert app.healthcheck.test == ['CMD-SHELL', 'curl -f http://localhost || exit 1']
    assert app.deploy.restart_policy.condition == 'on-failure'
    assert app.deploy.restart_policy.max_attempts == 3
    assert app.deploy.restart_policy.window == '120s'
    assert app.deploy.resources.limits.cpus == 0.5
    assert app.deploy.resources.limits.memory == '50M'


@pytest.mark.parametrize("spec, expected", [
    ("80", "80"),
    ("8080:80", "8080:80"),
    ("127.0.0.1:8080:80/udp", "127.0.0.1:8080:80/udp"),
    ("[::1]:8080:80", "[::1]:8080:80"),
    ({"target": 80, "published": "8080", "host_ip": "0.0.0.0", "protocol": "tcp"}, "0.0.0.0:8080:80/tcp"),
])
def test_parse_port(spec, expected):
    assert parse_port(spec).to_port_string() == expected


def test_parse_port_invalid():
    with pytest.raises(ValueError):
        parse_port("1:2:3:4")


def test_parse_volume():
    anonymous = parse_volume("/var/cache")
    assert anonymous.source is None
    assert anonymous.target == "/var/cache"

    named = parse_volume("data:/data:ro,nocopy")
    assert named.type == "volume"
    assert named.options() == ["ro", "nocopy"]

    bind = parse_volume({"type": "bind", "source": "/srv", "target": "/srv", "bind": {"propagation": "rshared"}})
    assert bind.type == "bind"
    assert bind.options() == ["rw", "rshared"]

    with pytest.raises(ValueError):
        parse_volume("data:/data:bogus")


def test_build_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("TAG=from-file\nONLY_FILE=1\n")
    monkeypatch.setenv("TAG", "from-os")

    env = build_environment([str(env_file)])
    assert env["TAG"] == "from-os"
    assert env["ONLY_FILE"] == "1"

    env = build_environment([str(env_file)], include_os_environ=False)
    assert env == {"TAG": "from-file", "ONLY_FILE": "1"}
