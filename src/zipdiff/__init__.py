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

'''
zipdiff: structural inspection and comparison of ZIP archives.

    >>> model = zipdiff.analyze(open('a.zip', 'rb').read())
    >>> result = zipdiff.compare(model, other_model)
'''

from .compare import compare, ComparisonResult, FieldDiff
from .model import ArchiveModel, CentralDirectoryHeader, EndOfCentralDirectory, \
    LocalFileHeader
from .ZipStructureParser import analyze

__all__ = ['analyze', 'compare', 'ArchiveModel', 'CentralDirectoryHeader',
           'ComparisonResult', 'EndOfCentralDirectory', 'FieldDiff',
           'LocalFileHeader']
