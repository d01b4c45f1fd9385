# Copyright (c) 2024 The archview Authors
#
# This file is a part of `archview` project.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""Exceptions used everywhere.

   `ViewerError` and its children are the recoverable kinds the rewriters
   turn into degraded references, the rest stop the whole program.
"""

from kisstdlib.exceptions import *

class ViewerError(Failure): pass

class MalformedURL(ViewerError): pass
class NotInArchive(ViewerError): pass
class NotFound(ViewerError): pass
class Cycle(ViewerError): pass
class ParseFailure(ViewerError): pass
class FetchFailure(ViewerError): pass

class ArchiveError(CatastrophicFailure): pass
class IndexNotFound(CatastrophicFailure): pass
