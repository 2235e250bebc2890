import json
import logging

import click
from flask.cli import AppGroup

from offline import crag_pack
from offline.db import OfflineUnavailableError

logger = logging.getLogger(__name__)

offline_cli = AppGroup('offline', help='Manage crags downloaded for offline use.')


def _source(base_url):
    if base_url:
        return crag_pack.ApiCragSource(base_url)
    return crag_pack.default_source()


@offline_cli.command('download')
@click.argument('crag_id')
@click.option('--base-url', default=None, help='App instance to download from.')
def download_command(crag_id, base_url):
    """Download a crag with its images and map screenshot."""
    def progress(p):
        message = f' {p.message}' if p.message else ''
        click.echo(f'[{p.phase}] {p.completed}/{p.total}{message}')

    try:
        result = crag_pack.download_crag_for_offline(crag_id, _source(base_url), on_progress=progress)
    except (crag_pack.CragPackError, OfflineUnavailableError) as e:
        raise click.ClickException(str(e))
    click.echo(f'Downloaded {result["meta"].name} ({result["imageCount"]} images)')


@offline_cli.command('remove')
@click.argument('crag_id')
def remove_command(crag_id):
    """Remove a downloaded crag."""
    if not crag_pack.is_crag_downloaded(crag_id):
        raise click.ClickException(f'Crag {crag_id} is not downloaded')
    crag_pack.remove_crag_download(crag_id)
    click.echo(f'Removed {crag_id}')


@offline_cli.command('list')
def list_command():
    """List downloaded crags, newest first."""
    metas = crag_pack.list_offline_crags()
    if not metas:
        click.echo('No crags downloaded')
    for meta in metas:
        click.echo(f'{meta.cragId}\t{meta.name}\t{meta.downloadedAt}')


@offline_cli.command('show')
@click.argument('crag_id')
def show_command(crag_id):
    """Print a downloaded crag's metadata, record and images as JSON."""
    meta = crag_pack.get_offline_crag_meta(crag_id)
    if meta is None:
        raise click.ClickException(f'Crag {crag_id} is not downloaded')
    crag = crag_pack.get_offline_crag(crag_id)
    images = crag_pack.get_offline_images_for_crag(crag_id)
    click.echo(json.dumps({
        'meta': meta.to_dict(),
        'crag': crag.to_dict() if crag else None,
        'images': [img.to_dict() for img in images],
        'hasMap': crag_pack.get_offline_crag_map_object_url(crag_id) is not None,
    }, indent=2))
