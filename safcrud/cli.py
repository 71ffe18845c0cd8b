# flask cli commands, registered on the app by SafCrudApi:
#
#   flask safcrud generate-docs --output swagger.json
#   flask safcrud generate-docs --yaml
#
import json
from pathlib import Path
import click
import yaml
from flask import current_app
from flask.cli import AppGroup
from .json_encoder import SafCrudJSONEncoder

safcrud_cli = AppGroup("safcrud", help="safcrud api commands")


@safcrud_cli.command("generate-docs")
@click.option("--output", "-o", default=None, help="Output file, stdout if omitted")
@click.option("--yaml", "as_yaml", is_flag=True, help="Write yaml instead of json")
@click.option("--host", default=None, help="Host shown in the swagger ui")
def generate_docs(output, as_yaml, host):
    """Write the swagger document of the exposed entities"""
    safcrud_api = current_app.extensions.get("safcrud")
    if safcrud_api is None:
        raise click.ClickException("No safcrud api is configured for this app")

    doc = safcrud_api.swagger_doc(host=host)
    if as_yaml:
        text = yaml.safe_dump(doc, sort_keys=False)
    else:
        text = json.dumps(doc, indent=2, cls=SafCrudJSONEncoder)

    if output is None:
        click.echo(text)
        return
    Path(output).write_text(text, encoding="utf-8")
    click.echo(f"Documentation written to {output}")
