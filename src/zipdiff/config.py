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

# import YAML module for the configuration
from yaml import load
from yaml import YAMLError
try:
    from yaml import CLoader as Loader
except ImportError:
    from yaml import Loader

from .ZipStructureParser import EOCD_SEARCH_LIMIT


class ConfigurationException(Exception):
    pass


class ZipDiffConfig:
    '''Analysis and comparison settings. The configuration file is YAML:

    analysis:
      strict: false
      eocd_search_limit: 65557
    comparison:
      ignore_fields: [offset]
    '''

    def __init__(self):
        self._strict = False
        self._eocd_search_limit = EOCD_SEARCH_LIMIT
        self._ignore_fields = []

    @property
    def strict(self):
        return self._strict

    @strict.setter
    def strict(self, strict: bool):
        if not isinstance(strict, bool):
            raise ConfigurationException(f'strict should be true or false, not {strict!r}')
        self._strict = strict

    @property
    def eocd_search_limit(self):
        return self._eocd_search_limit

    @eocd_search_limit.setter
    def eocd_search_limit(self, limit):
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 22):
            raise ConfigurationException(f'eocd_search_limit should be null or a number of at least 22, not {limit!r}')
        self._eocd_search_limit = limit

    @property
    def ignore_fields(self):
        return self._ignore_fields

    @ignore_fields.setter
    def ignore_fields(self, fields):
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            raise ConfigurationException(f'ignore_fields should be a list of field names, not {fields!r}')
        self._ignore_fields = fields


def load_config(config_file):
    '''Read a YAML configuration from an open file and return a ZipDiffConfig'''
    config = ZipDiffConfig()
    try:
        data = load(config_file, Loader=Loader)
    except (YAMLError, UnicodeDecodeError) as e:
        raise ConfigurationException(f'cannot parse configuration file: {e}') from e

    if data is None:
        return config
    if not isinstance(data, dict):
        raise ConfigurationException('configuration should be a mapping')

    analysis = data.get('analysis') or {}
    if not isinstance(analysis, dict):
        raise ConfigurationException('analysis should be a mapping')
    if 'strict' in analysis:
        config.strict = analysis['strict']
    if 'eocd_search_limit' in analysis:
        config.eocd_search_limit = analysis['eocd_search_limit']

    comparison = data.get('comparison') or {}
    if not isinstance(comparison, dict):
        raise ConfigurationException('comparison should be a mapping')
    if 'ignore_fields' in comparison:
        config.ignore_fields = comparison['ignore_fields']

    return config
