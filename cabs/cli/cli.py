import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable
import click
from cabs.object_model import *
from cabs.refs import ZERO_REF, to_ref, InvalidRefError
from cabs.errors import StoreError, ConfigError, error_chain
from cabs.blob_store import BlobStore, anchor_view
from cabs.registry import from_config_file
from cabs.timestamps import parse_time, utc_now, format_time
from cabs.sync import sync_stores

# Command line interface to work with a configured blob store.
# It utilizes the 'click' library.

EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2

@dataclass
class CliContext:
    verbose:bool
    config_path:str

def _echo_error(error:BaseException) -> None:
    for line in error_chain(error):
        click.echo(f"error: {line}", err=True)

def _run(ctx:click.Context, main:Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(main())
    except ConfigError as e:
        _echo_error(e)
        ctx.exit(EXIT_CONFIG_ERROR)
    except (StoreError, OSError, ValueError) as e:
        _echo_error(e)
        ctx.exit(EXIT_RUNTIME_ERROR)

async def _with_store(cli_ctx:CliContext, use:Callable[[BlobStore], Awaitable[None]]) -> None:
    store = await from_config_file(cli_ctx.config_path)
    try:
        await use(store)
    finally:
        await store.close()

class RefParamType(click.ParamType):
    name = "ref"

    def convert(self, value, param, ctx):
        if isinstance(value, bytes):
            return value
        try:
            return to_ref(value)
        except InvalidRefError as e:
            self.fail(str(e), param, ctx)

class TimeParamType(click.ParamType):
    name = "time"

    def convert(self, value, param, ctx):
        if not isinstance(value, str):
            return value
        try:
            return parse_time(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)

REF = RefParamType()
TIME = TimeParamType()

@click.group()
@click.pass_context
@click.option("--config", "-c", "config_path", envvar="CABS_CONFIG", default="cabsconf.json", show_default=True,
              help="Store configuration file, JSON or TOML.")
@click.option("--verbose", "-v", is_flag=True, help="Will print log messages of the stores.")
def cli(ctx:click.Context, config_path:str, verbose:bool):
    #print logs to console
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    ctx.obj = CliContext(verbose=verbose, config_path=config_path)

#===========================================================
# blobs
#===========================================================
@cli.command()
@click.pass_context
@click.argument("ref", type=REF)
def get(ctx:click.Context, ref:Ref):
    """Writes the blob with the given hex ref to stdout."""
    async def use(store:BlobStore):
        blob = await store.get(ref)
        out = click.get_binary_stream('stdout')
        out.write(blob)
        out.flush()
    _run(ctx, lambda: _with_store(ctx.obj, use))

@cli.command()
@click.pass_context
@click.argument("file", type=click.File('rb'))
def put(ctx:click.Context, file):
    """Stores the contents of FILE ('-' for stdin) and prints its ref."""
    data = file.read()
    async def use(store:BlobStore):
        ref, added = await store.put(data)
        click.echo(ref.hex())
        if ctx.obj.verbose:
            click.echo("added" if added else "already present", err=True)
    _run(ctx, lambda: _with_store(ctx.obj, use))

@cli.command("list-refs")
@click.pass_context
@click.argument("start", type=REF, required=False)
def list_refs(ctx:click.Context, start:Ref|None):
    """Prints the refs greater than START, in order."""
    async def use(store:BlobStore):
        async def on_ref(ref:Ref):
            click.echo(ref.hex())
        await store.list_refs(start if start is not None else ZERO_REF, on_ref)
    _run(ctx, lambda: _with_store(ctx.obj, use))

#===========================================================
# anchors
#===========================================================
@cli.command("get-anchor")
@click.pass_context
@click.argument("name")
@click.argument("at", type=TIME, required=False)
def get_anchor(ctx:click.Context, name:str, at):
    """Prints the ref the anchor NAME designated at time AT (default: now)."""
    async def use(store:BlobStore):
        ref = await anchor_view(store).get_anchor(name, at if at is not None else utc_now())
        click.echo(ref.hex())
    _run(ctx, lambda: _with_store(ctx.obj, use))

@cli.command("put-anchor")
@click.pass_context
@click.argument("name")
@click.argument("ref", type=REF)
@click.argument("at", type=TIME)
def put_anchor(ctx:click.Context, name:str, ref:Ref, at):
    """Records that the anchor NAME designates REF from time AT on."""
    async def use(store:BlobStore):
        await anchor_view(store).put_anchor(name, ref, at)
    _run(ctx, lambda: _with_store(ctx.obj, use))

@cli.command("list-anchors")
@click.pass_context
@click.argument("start", required=False, default="")
def list_anchors(ctx:click.Context, start:str):
    """Prints the anchor entries with names greater than START: name, time and ref."""
    async def use(store:BlobStore):
        async def on_anchor(anchor:Anchor):
            click.echo(f"{anchor.name}\t{format_time(anchor.at)}\t{anchor.ref.hex()}")
        await anchor_view(store).list_anchors(start, on_anchor)
    _run(ctx, lambda: _with_store(ctx.obj, use))

#===========================================================
# sync
#===========================================================
@cli.command()
@click.pass_context
@click.argument("configs", nargs=-1, required=True)
def sync(ctx:click.Context, configs:tuple[str, ...]):
    """Synchronizes the stores of two or more configuration files."""
    if len(configs) < 2:
        raise click.UsageError("sync needs at least two store configurations")
    async def main():
        stores:list[BlobStore] = []
        try:
            for config_path in configs:
                stores.append(await from_config_file(config_path))
            await sync_stores(stores)
        finally:
            for store in stores:
                await store.close()
    _run(ctx, main)

def main():
    cli(obj=None)

if __name__ == '__main__':
    main()
