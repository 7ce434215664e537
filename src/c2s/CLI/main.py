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
Command Line Interface for C2S.
"""
import click
import yaml

from ..CONVERTERS.to_systemd import SystemdConverter
from ..errors import ResolutionError
from ..MODELS.generator_options import GeneratorOptions
from ..MODELS.unit_model import DEFAULT_PROJECT_SEPARATOR, ContainerRuntime, Project
from ..RESOLVERS.generator import Generator
from ..UTILS.logger import setup_logging


@click.group()
@click.option('--file', '-f', 'files', multiple=True, default=['docker-compose.yml'], show_default=True,
              help='Compose file path; repeat to merge several files')
@click.option('--project', '-p', default='', help='Project name used as a prefix for generated resources')
@click.option('--project-separator', default=DEFAULT_PROJECT_SEPARATOR, show_default=True,
              help='Separator between the project and resource names')
@click.option('--runtime', type=click.Choice([r.value for r in ContainerRuntime]),
              default=ContainerRuntime.PODMAN.value, show_default=True, help='Container runtime')
@click.option('--env-file', 'env_files', multiple=True, help='Path to a .env file; may be repeated')
@click.option('--include-env-files', is_flag=True, help='Pass env files to the runtime instead of inlining them')
@click.option('--env-files-only', is_flag=True, help='Only use env files for container environments')
@click.option('--ignore-missing-env-files', is_flag=True, help='Skip missing env files with a warning')
@click.option('--root-path', default=None, help='Directory relative bind mounts are resolved against')
@click.option('--service-include', default=None, help='Regex pattern for services to include')
@click.option('--auto-start/--no-auto-start', default=True, show_default=True,
              help='Auto-start setting for generated containers')
@click.option('--use-compose-log-driver', is_flag=True, help='Always use the Compose log driver')
@click.option('--keep-unused-resources', is_flag=True, help='Generate networks and volumes no container uses')
@click.option('--remove-volumes', is_flag=True, help='Remove volumes when their unit stops')
@click.option('--create-root-target/--no-create-root-target', default=True, show_default=True,
              help='Group all units under a root target')
@click.option('--check-systemd-mounts', is_flag=True, help='Order containers after the mounts their paths live on')
@click.option('--systemd-version', type=int, default=None, help='systemd version of the target host')
@click.option('--write-runtime-setup', is_flag=True, help='Also write a setup.sh that installs the units')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, files, project, project_separator, runtime, env_files, include_env_files, env_files_only,
        ignore_missing_env_files, root_path, service_include, auto_start, use_compose_log_driver,
        keep_unused_resources, remove_volumes, create_root_target, check_systemd_mounts, systemd_version,
        write_runtime_setup, verbose):
    """
    C2S - Compose to systemd converter.

    Resolves Compose files into systemd units running each service as a
    docker or podman container.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['files'] = list(files)
    ctx.obj['options'] = GeneratorOptions(
        project=Project(name=project, separator=project_separator),
        runtime=ContainerRuntime(runtime),
        env_files=list(env_files),
        include_env_files=include_env_files,
        env_files_only=env_files_only,
        ignore_missing_env_files=ignore_missing_env_files,
        root_path=root_path,
        service_include=service_include,
        auto_start=auto_start,
        use_compose_log_driver=use_compose_log_driver,
        keep_unused_resources=keep_unused_resources,
        remove_volumes=remove_volumes,
        create_root_target=create_root_target,
        check_systemd_mounts=check_systemd_mounts,
        systemd_version=systemd_version,
        write_runtime_setup=write_runtime_setup,
    )


def _generate(ctx):
    try:
        return Generator(ctx.obj['options']).generate(ctx.obj['files'])
    except (ResolutionError, ValueError, yaml.YAMLError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


@cli.command()
@click.option('--out', '-o', default='systemd', show_default=True, help='Output directory')
@click.pass_context
def convert(ctx, out):
    """Write systemd unit files"""
    config = _generate(ctx)
    SystemdConverter(config).convert(out)
    click.echo(f"Systemd unit files generated in {out}")


@cli.command()
@click.pass_context
def inspect(ctx):
    """Print the resolved model as JSON"""
    config = _generate(ctx)
    click.echo(config.model_dump_json(indent=2))


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={}, auto_envvar_prefix='C2S')


if __name__ == '__main__':
    main()
