# This file is part of the imessage-typedstream library.
# Copyright (C) 2020 dgelessus
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.


# "Unused" imports and star imports are ok in __init__.py.
from .errors import * # noqa: F401, F403
from .values import * # noqa: F401, F403
from .stream import TypedStreamReader, parse_data, parse_file # noqa: F401

# To release a new version:
# * Remove the .dev suffix from the version number in this file.
# * Update the changelog in the README.md (rename the "next version" section to the correct version number).
# * Remove the ``dist`` directory (if it exists) to clean up any old release files.
# * Run ``python3 -m build`` to build the release files.
# * Run ``python3 -m twine check dist/*`` to check the release files.
# * Commit the changes to main and tag the release commit with the version number, prefixed with a "v".
# * Upload the release files to PyPI using ``python3 -m twine upload dist/*``.

# After releasing:
# * Bump the version number in this file and in pyproject.toml to the next version and add a .dev suffix.

__version__ = "0.1.0.dev"
