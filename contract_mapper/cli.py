#!/usr/bin/env python3
"""CLI interface for contract-mapper."""

import os
import sys
import json
import logging
from dataclasses import asdict
from typing import Optional

import click

from .config import NETWORKS, load_config
from .crawler import Crawler
from .formatters import format_json, format_summary
from .graph import write_gexf
from .patterns import (
    extract_declared_implementations,
    extract_hardcoded_addresses,
    parse_source_for_types,
)
from .persistence import JsonFileRepository


def setup_logging(output_dir: str, verbose: bool = False):
    os.makedirs(output_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(os.path.join(output_dir, "output.log")),
        ],
        force=True,
    )
    # web3 and urllib3 are chatty at DEBUG
    for noisy in ("web3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Map the on-chain neighborhood of a smart contract."""
    pass


@cli.command()
@click.argument("address")
@click.option("-n", "--network", type=click.Choice(sorted(NETWORKS)), help="Network to analyze")
@click.option("-c", "--config", "config_path", type=click.Path(), help="YAML config file")
@click.option("-m", "--max-contracts", type=int, help="Maximum addresses to explore")
@click.option("-o", "--output-dir", type=click.Path(), help="Directory for the analysis JSON and log")
@click.option(
    "-f", "--format",
    type=click.Choice(["summary", "json"]),
    default="summary",
    help="Output format"
)
@click.option("--gexf", type=click.Path(), help="Also write the graph as GEXF")
@click.option("--decompiler", type=click.Choice(["panoramix", "none"]), help="Decompiler backend")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def analyze(address: str, network: Optional[str], config_path: Optional[str], max_contracts: Optional[int],
            output_dir: Optional[str], format: str, gexf: Optional[str], decompiler: Optional[str], verbose: bool):
    """Crawl outward from ADDRESS and build its contract graph."""
    try:
        settings = load_config(
            config_path,
            network=network,
            max_contracts=max_contracts,
            output_dir=output_dir,
            decompiler=decompiler,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    setup_logging(settings.output_dir, verbose)
    click.echo(f"Analyzing {address} on {settings.network}", err=True)

    repository = JsonFileRepository(settings.output_dir)
    crawler = Crawler.from_settings(settings, repository)
    try:
        result = crawler.run(address, on_progress=lambda pct, msg: logging.debug(f"[{pct:3d}%] {msg}"))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    if gexf:
        write_gexf(result.graph, gexf)
        click.echo(f"Graph written to: {gexf}", err=True)
    click.echo(f"Analysis saved to: {repository.path_for(result.analysis_id)}", err=True)

    if format == "json":
        click.echo(format_json(result))
    else:
        click.echo(format_summary(result))


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("-s", "--self-address", help="Address of the contract the file belongs to (excluded from results)")
def extract(file: str, self_address: Optional[str]):
    """Run the address and type scanners over a local source FILE."""
    with open(file, encoding="utf-8", errors="replace") as f:
        text = f.read()

    name = os.path.basename(file)
    output = {
        "file": name,
        "hardcodedAddresses": extract_hardcoded_addresses(text, self_address),
        "declaredImplementations": extract_declared_implementations(text, self_address),
        "types": [asdict(t) for t in parse_source_for_types(text, name)],
    }
    click.echo(json.dumps(output, indent=2))


def main():
    cli()


if __name__ == "__main__":
    main()
