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


import typing

from . import errors
from . import values


__all__ = [
	"TypeTable",
	"ObjectTable",
]


_T = typing.TypeVar("_T")


class _AppendOnlyTable(typing.Generic[_T]):
	"""A table of entries that are referenced by their insertion index.

	Entries can only be appended, never replaced or removed,
	because the typedstream format refers back to them purely by position.
	"""

	_entries: typing.List[_T]

	def __init__(self) -> None:
		super().__init__()

		self._entries = []

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self._entries!r})"

	def __len__(self) -> int:
		return len(self._entries)

	def __iter__(self) -> typing.Iterator[_T]:
		return iter(self._entries)

	def register(self, entry: _T) -> int:
		"""Append an entry to the table.

		:return: The index under which the entry can be resolved from now on.
		"""

		self._entries.append(entry)
		return len(self._entries) - 1

	def resolve(self, index: int) -> _T:
		"""Look up a previously registered entry.

		:raise UnresolvedReference: If nothing has been registered at ``index`` (yet).
		"""

		if not 0 <= index < len(self._entries):
			raise errors.UnresolvedReference(index)
		return self._entries[index]

	def last(self) -> typing.Optional[_T]:
		"""Return the most recently registered entry, or ``None`` if the table is empty."""

		if not self._entries:
			return None
		return self._entries[-1]


class TypeTable(_AppendOnlyTable[typing.Sequence[values.AnyTypeCode]]):
	"""All type lists seen so far in a stream, including the pseudo-type lists created for class names."""


class ObjectTable(_AppendOnlyTable[values.ArchiveEntry]):
	"""All classes and embedded objects seen so far in a stream."""
