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


__all__ = [
	"InvalidTypedStreamError",
	"UnexpectedEndOfStream",
	"InvalidText",
	"UnresolvedReference",
	"MalformedClassChain",
]


class InvalidTypedStreamError(Exception):
	"""Raised by :class:`~imessage_typedstream.stream.TypedStreamReader` if the typedstream data is invalid or doesn't match the expected structure.

	All errors raised for malformed data are instances of one of the subclasses below.
	"""


class UnexpectedEndOfStream(InvalidTypedStreamError):
	"""A read needed more bytes than are left in the data."""


class InvalidText(InvalidTypedStreamError):
	"""A string or class name in the data is not valid UTF-8."""


class UnresolvedReference(InvalidTypedStreamError):
	"""A back-reference points at a table entry that doesn't exist (yet)."""

	index: int

	def __init__(self, index: int) -> None:
		super().__init__(f"Reference to #{index}, which has not been registered")

		self.index = index


class MalformedClassChain(InvalidTypedStreamError):
	"""A class chain (or a chain of nested objects) doesn't terminate before the data ends."""
