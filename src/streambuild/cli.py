"""Main CLI entry point for streambuild."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from docker.errors import DockerException

from .builder import Builder
from .channel import pipe_to_channel
from .config import StreamBuildConfig
from .errors import StreamBuildError
from .hooks import BuildHooks
from .manifest import BuildManifest
from .template import TemplateTransform

logger = logging.getLogger(__name__)


def parse_pairs(ctx: click.Context, param: click.Parameter, values: Tuple[str, ...]) -> Dict[str, str]:
    """Turns repeated KEY=VALUE options into a dict."""
    pairs = {}
    for value in values:
        key, sep, item = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'")
        pairs[key] = item
    return pairs


class BuildOutcome:
    """Collects the terminal hook of one build."""

    def __init__(self) -> None:
        self.image_id: Optional[str] = None
        self.layers: List[str] = []
        self.error: Optional[BaseException] = None
        self.hook_errors: List[BaseException] = []
        self._done = threading.Event()

    def hooks(self) -> BuildHooks:
        return {
            "build_success": self.on_success,
            "build_failure": self.on_failure,
        }

    def on_success(self, image_id: Optional[str], layers: List[str]) -> None:
        self.image_id = image_id
        self.layers = layers
        self._done.set()

    def on_failure(self, error: BaseException, layers: List[str]) -> None:
        self.error = error
        self.layers = layers
        self._done.set()

    def on_hook_error(self, error: BaseException) -> None:
        self.hook_errors.append(error)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


def build_options(func):
    """Options shared by the build commands."""
    options = [
        click.option(
            "--config",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="Path to a streambuild YAML config.",
        ),
        click.option("-t", "--tag", help="Tag for the built image."),
        click.option("-f", "--dockerfile", help="Dockerfile path inside the context."),
        click.option("--target", help="Build stage to stop at."),
        click.option("--build-arg", multiple=True, callback=parse_pairs, help="Build argument KEY=VALUE."),
        click.option(
            "--template-var",
            multiple=True,
            callback=parse_pairs,
            help="Value for a %%KEY%% placeholder in Dockerfile.template, as KEY=VALUE.",
        ),
        click.option("--no-cache", is_flag=True, help="Do not use the build cache."),
        click.option(
            "--manifest",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Write the build outcome to this JSON file.",
        ),
        click.option("--quiet", is_flag=True, help="Do not print build output."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def load_settings(
    config: Optional[Path],
    tag: Optional[str],
    dockerfile: Optional[str],
    target: Optional[str],
    build_arg: Dict[str, str],
    template_var: Dict[str, str],
    no_cache: bool,
) -> StreamBuildConfig:
    """Loads the config file, if any, and applies command line overrides."""
    cfg = StreamBuildConfig.from_yaml(config) if config else StreamBuildConfig()

    overrides: Dict[str, Any] = {
        "buildargs": {**cfg.build.buildargs, **build_arg},
        "template_vars": {**cfg.build.template_vars, **template_var},
    }
    if tag:
        overrides["tag"] = tag
    if dockerfile:
        overrides["dockerfile"] = dockerfile
    if target:
        overrides["target"] = target
    if no_cache:
        overrides["nocache"] = True

    return cfg.model_copy(update={"build": cfg.build.model_copy(update=overrides)})


def follow_build(
    ctx: click.Context,
    stream: Any,
    outcome: BuildOutcome,
    name: str,
    manifest_path: Optional[Path],
    quiet: bool,
) -> None:
    """Prints build output until the build ends, then reports the outcome."""
    try:
        for text in stream:
            if not quiet:
                click.echo(text, nl=False)
    except Exception as e:
        # Reported through the build_failure hook.
        logger.debug("Build channel closed with %r", e)

    outcome.wait()

    if manifest_path is not None:
        manifest = BuildManifest(manifest_path)
        if outcome.error is not None:
            manifest.record_failure(name, outcome.error, outcome.layers)
        else:
            manifest.record_success(name, outcome.image_id, outcome.layers)
        manifest.save()

    for error in outcome.hook_errors:
        click.secho(f"Warning: build hook failed: {error}", fg="yellow", err=True)

    if outcome.error is not None:
        click.secho(f"Build failed: {outcome.error}", fg="red", err=True)
        if outcome.layers:
            click.echo(f"{len(outcome.layers)} layers completed before the failure.", err=True)
        ctx.exit(1)

    click.secho(f"Successfully built {outcome.image_id} ({len(outcome.layers)} layers)", fg="green")


@click.group()
@click.option("--verbose", is_flag=True, help="Show debug logging.")
def cli(verbose: bool):
    """streambuild: stream image builds to a container engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@build_options
@click.pass_context
def build(ctx, path, config, tag, dockerfile, target, build_arg, template_var, no_cache, manifest, quiet):
    """Builds the directory PATH as the image's build context."""
    cfg = load_settings(config, tag, dockerfile, target, build_arg, template_var, no_cache)

    outcome = BuildOutcome()
    hooks = outcome.hooks()
    if cfg.build.template_vars:
        hooks["build_transform"] = TemplateTransform(cfg.build.template_vars)

    try:
        builder = Builder(cfg.engine)
        stream = builder.build_dir(path, cfg.build.to_build_options(), hooks, outcome.on_hook_error)
    except (StreamBuildError, DockerException) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        ctx.exit(1)

    follow_build(ctx, stream, outcome, str(path), manifest, quiet)


@cli.command(name="build-archive")
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@build_options
@click.pass_context
def build_archive(ctx, archive, config, tag, dockerfile, target, build_arg, template_var, no_cache, manifest, quiet):
    """Builds an image from the tar build context ARCHIVE."""
    cfg = load_settings(config, tag, dockerfile, target, build_arg, template_var, no_cache)
    outcome = BuildOutcome()
    variables = cfg.build.template_vars

    def send_context(stream):
        target_stream = TemplateTransform(variables)(stream) if variables else stream
        pipe_to_channel(open(archive, "rb"), target_stream)

    hooks = outcome.hooks()
    hooks["build_stream"] = send_context

    try:
        builder = Builder(cfg.engine)
    except DockerException as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        ctx.exit(1)

    stream = builder.create_build_stream(cfg.build.to_build_options(), hooks, outcome.on_hook_error)
    follow_build(ctx, stream, outcome, str(archive), manifest, quiet)


if __name__ == "__main__":
    cli()
