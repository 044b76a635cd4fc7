"""CLI entrypoint for buildcache."""

import sys
from pathlib import Path

import click

from . import __version__
from .logs import setup_logging


def _parse_properties(values: tuple[str, ...]) -> dict[str, str]:
    """Turn `-D key=value` options into a property mapping (`-D key` sets an empty value)."""
    properties: dict[str, str] = {}
    for value in values:
        key, _, prop = value.partition("=")
        key = key.strip()
        if not key:
            raise click.BadParameter(f"invalid property {value!r}", param_hint="-D")
        properties[key] = prop
    return properties


@click.group()
@click.version_option(__version__, prog_name="buildcache")
@click.option(
    "--root",
    "-r",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=".",
    help="Build root directory (defaults to the current directory)",
)
@click.option(
    "--reactor",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Reactor description (defaults to <root>/reactor.yaml)",
)
@click.option(
    "-D",
    "defines",
    multiple=True,
    metavar="KEY=VALUE",
    help="Property override, e.g. -D cache.enabled=false",
)
@click.option("--verbose", is_flag=True, help="Log cache decisions in detail")
@click.pass_context
def cli(ctx: click.Context, root: Path, reactor: Path | None, defines: tuple[str, ...], verbose: bool) -> None:
    """buildcache - Fast-forward unchanged modules of multi-module builds.

    Records what each module build produced and which executions ran, and
    decides on the next build which executions can be skipped.
    """
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["root"] = root.resolve()
    ctx.obj["reactor"] = reactor
    ctx.obj["properties"] = _parse_properties(defines)


@cli.command()
@click.option("--goal", "goals", multiple=True, help="Goal of the prospective build (repeatable)")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option("--explain", is_flag=True, help="Print verdict lines for every module")
@click.pass_context
def status(ctx: click.Context, goals: tuple[str, ...], output_json: bool, explain: bool) -> None:
    """Show which modules can be fast-forwarded.

    Exits with 1 if any module must be built.
    """
    from .commands.status import run_status

    exit_code = run_status(
        ctx.obj["root"],
        ctx.obj["reactor"],
        ctx.obj["properties"],
        goals,
        output_json=output_json,
        explain=explain,
    )
    sys.exit(exit_code)


@cli.command()
@click.option("--goal", "goals", multiple=True, help="Goal of the build (repeatable, default: install)")
@click.option("--dry-run", is_flag=True, help="Report run / skip decisions without recording state")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def build(ctx: click.Context, goals: tuple[str, ...], dry_run: bool, output_json: bool) -> None:
    """Walk the build plan and record module state.

    Every execution that is not skipped is assumed to have run successfully.

    Examples:

        buildcache build --dry-run

        buildcache -D cache.create_archive=true build --goal clean --goal install
    """
    from .commands.build import run_build

    exit_code = run_build(
        ctx.obj["root"],
        ctx.obj["reactor"],
        ctx.obj["properties"],
        goals or ("install",),
        dry_run=dry_run,
        output_json=output_json,
    )
    sys.exit(exit_code)


@cli.command()
@click.argument("reference")
@click.option("--include", "includes", multiple=True, help="Include glob (repeatable)")
@click.option("--exclude", "excludes", multiple=True, help="Exclude glob (repeatable)")
@click.option("--json", "output_json", is_flag=True, help="Output result as JSON")
def match(reference: str, includes: tuple[str, ...], excludes: tuple[str, ...], output_json: bool) -> None:
    """Tell whether an execution takes part in caching.

    REFERENCE is group:artifact:version:goal@executionId.

    Examples:

        buildcache match org.apache.maven.plugins:maven-jar-plugin:3.2.0:jar@default-jar --exclude '*:maven-jar-plugin:*'
    """
    from .commands.config_cmd import run_match

    sys.exit(run_match(reference, list(includes), list(excludes), output_json=output_json))


@cli.command("diff-config")
@click.argument("orig", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("actual", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output result as JSON")
def diff_config(orig: Path, actual: Path, output_json: bool) -> None:
    """Compare two configurations (XML or YAML) structurally.

    Exits with 1 if they differ.
    """
    from .commands.config_cmd import run_diff_config

    sys.exit(run_diff_config(orig, actual, output_json=output_json))


@cli.group()
def archive() -> None:
    """Create and inspect the build cache archive."""
    pass


@archive.command("create")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Archive file (defaults to the configured archive_file)",
)
@click.pass_context
def archive_create(ctx: click.Context, output: Path | None) -> None:
    """Archive the outputs of all valid modules."""
    from .commands.archive_cmd import run_archive_create

    exit_code = run_archive_create(ctx.obj["root"], ctx.obj["reactor"], ctx.obj["properties"], output)
    sys.exit(exit_code)


@archive.command("list")
@click.argument("archive_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output index as JSON")
@click.pass_context
def archive_list(ctx: click.Context, archive_file: Path, output_json: bool) -> None:
    """List the modules and files of an archive."""
    from .commands.archive_cmd import run_archive_list

    sys.exit(run_archive_list(archive_file, ctx.obj["root"], output_json=output_json))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
