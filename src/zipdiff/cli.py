#!/usr/bin/env python3

# zipdiff
#
# This file is part of zipdiff.
#
# zipdiff is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License, version 3,
# as published by the Free Software Foundation.
#
# zipdiff is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public
# License, version 3, along with zipdiff.  If not, see
# <http://www.gnu.org/licenses/>
#
# Licensed under the terms of the GNU Affero General Public License
# version 3
# SPDX-License-Identifier: AGPL-3.0-only

import logging
import pathlib
import sys

import click
import rich.console

from .compare import compare
from .config import ZipDiffConfig, ConfigurationException, load_config
from .log import log
from .ZipParserException import ZipParserException
from .ZipStructureParser import analyze
from . import reporter

ZIPDIFF_VERSION = '0.1.0'

# exit status of 'compare' if the archives differ
DIFFERENCES_FOUND = 2


def create_config(config_file, strict):
    config = ZipDiffConfig()
    if config_file is not None:
        # read the configuration file. This is in YAML format
        try:
            config = load_config(config_file)
        except ConfigurationException as e:
            print(f"Cannot use configuration file: {e}, exiting", file=sys.stderr)
            sys.exit(1)
    if strict:
        config.strict = True
    return config


def read_archive(path, config):
    '''Read the file at path and parse it. Errors are fatal.'''
    try:
        buffer = path.read_bytes()
    except OSError as e:
        print(f"Cannot read {path}: {e}, exiting", file=sys.stderr)
        sys.exit(1)

    log.debug(f'cli:read_archive[{path}]: {len(buffer)} bytes')
    try:
        return analyze(buffer, strict=config.strict,
                       eocd_search_limit=config.eocd_search_limit)
    except ZipParserException as e:
        print(f"{path}: {e}", file=sys.stderr)
        sys.exit(1)


@click.group()
@click.version_option(ZIPDIFF_VERSION)
def app():
    pass


# zipdiff analyze <input file>
@app.command('analyze', short_help='Show the structure of a ZIP file')
@click.option('-c', '--config', 'config_file', type=click.File('r'))
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.option('--strict', is_flag=True, help='Reject unknown extra fields')
@click.argument('path', type=click.Path(path_type=pathlib.Path, exists=True, dir_okay=False))
def analyze_command(config_file, verbose, strict, path):
    '''Parses the ZIP file PATH and shows its headers.
    '''
    if verbose:
        log.setLevel(logging.DEBUG)
    config = create_config(config_file, strict)
    model = read_archive(path, config)

    console = rich.console.Console()
    console.print(reporter.build_eocd_table(model))
    console.print(reporter.build_entries_table(model))

    mismatch_table, have_mismatches = reporter.build_mismatch_table(model)
    if have_mismatches:
        console.print(mismatch_table)

    extra_table, have_extra_fields = reporter.build_extra_fields_table(model)
    if have_extra_fields:
        console.print(extra_table)


# zipdiff compare <file> <file>
@app.command('compare', short_help='Compare the structure of two ZIP files')
@click.option('-c', '--config', 'config_file', type=click.File('r'))
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.option('--strict', is_flag=True, help='Reject unknown extra fields')
@click.option('-i', '--ignore', 'ignore_fields', multiple=True,
              help='Field to leave out of the comparison (can be repeated)')
@click.argument('path_a', type=click.Path(path_type=pathlib.Path, exists=True, dir_okay=False))
@click.argument('path_b', type=click.Path(path_type=pathlib.Path, exists=True, dir_okay=False))
def compare_command(config_file, verbose, strict, ignore_fields, path_a, path_b):
    '''Compares the headers of the ZIP files PATH_A and PATH_B. Exits
    with status 2 if they differ.
    '''
    if verbose:
        log.setLevel(logging.DEBUG)
    config = create_config(config_file, strict)

    model_a = read_archive(path_a, config)
    model_b = read_archive(path_b, config)

    result = compare(model_a, model_b, list(config.ignore_fields) + list(ignore_fields))
    log.debug(f'cli:compare: {len(result.field_diffs)} entry differences, {len(result.archive_diffs)} archive differences')

    console = rich.console.Console()
    if result.is_identical:
        console.print('No structural differences')
        return

    for renderable in reporter.build_comparison_tables(result, str(path_a), str(path_b)):
        console.print(renderable)
    sys.exit(DIFFERENCES_FOUND)


if __name__=="__main__":
    app()
