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


import enum
import typing


__all__ = [
	"TypeCode",
	"InlineName",
	"UnknownType",
	"AnyTypeCode",
	"type_code_from_byte",
	"Class",
	"Text",
	"Number",
	"RawByte",
	"NewObjectMarker",
	"BackReference",
	"Placeholder",
	"Empty",
	"DecodedValue",
	"ObjectValues",
	"ArchiveEntry",
]


class TypeCode(enum.Enum):
	"""The single-byte type codes that the reader knows how to decode.

	The member values are the raw bytes as they appear in a type list.
	Note that the lowercase ``i`` is the *unsigned* code here and the uppercase ``I`` the signed one.
	Both are read identically.
	"""

	UTF8_STRING = 0x2b # +
	EMBEDDED_DATA = 0x2a # *
	OBJECT = 0x40 # @
	SIGNED_INT = 0x49 # I
	UNSIGNED_INT = 0x69 # i


class InlineName(object):
	"""A class name that has been registered in the type table as a pseudo-type.

	Every literally stored class also occupies a slot in the type table,
	so that later type list references can point at it.
	Decoding an inline name yields its text and consumes no data.
	"""

	name: str

	def __init__(self, name: str) -> None:
		super().__init__()

		self.name = name

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.name!r})"

	def __str__(self) -> str:
		return f"inline name {self.name!r}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, InlineName):
			return NotImplemented

		return self.name == other.name


class UnknownType(object):
	"""A type code byte that the reader doesn't recognize.

	Such codes are passed through as :class:`RawByte` values instead of being rejected.
	"""

	byte: int

	def __init__(self, byte: int) -> None:
		super().__init__()

		self.byte = byte

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.byte:#04x})"

	def __str__(self) -> str:
		return f"unknown type {self.byte:#04x}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, UnknownType):
			return NotImplemented

		return self.byte == other.byte


AnyTypeCode = typing.Union[TypeCode, InlineName, UnknownType]


def type_code_from_byte(byte: int) -> AnyTypeCode:
	try:
		return TypeCode(byte)
	except ValueError:
		return UnknownType(byte)


class Class(object):
	"""Information about a class (name and version) as stored in a class chain.

	The same object is used as the object table entry for the class
	and as the decoded value that is emitted when an object resolves to a class.
	"""

	_name: str
	_version: int

	def __init__(self, name: str, version: int) -> None:
		super().__init__()

		self._name = name
		self._version = version

	@property
	def name(self) -> str:
		return self._name

	@property
	def version(self) -> int:
		return self._version

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(name={self.name!r}, version={self.version})"

	def __str__(self) -> str:
		return f"class {self.name} v{self.version}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Class):
			return NotImplemented

		return self.name == other.name and self.version == other.version

	def __hash__(self) -> int:
		return hash((self.name, self.version))


class Text(object):
	"""A decoded string, either read from the stream or taken from an inline class name."""

	value: str

	def __init__(self, value: str) -> None:
		super().__init__()

		self.value = value

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.value!r})"

	def __str__(self) -> str:
		return f"text: {self.value!r}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Text):
			return NotImplemented

		return self.value == other.value


class Number(object):
	value: int

	def __init__(self, value: int) -> None:
		super().__init__()

		self.value = value

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.value!r})"

	def __str__(self) -> str:
		return f"number: {self.value}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Number):
			return NotImplemented

		return self.value == other.value


class RawByte(object):
	"""The raw byte of an unrecognized type code, passed through verbatim."""

	value: int

	def __init__(self, value: int) -> None:
		super().__init__()

		self.value = value

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.value:#04x})"

	def __str__(self) -> str:
		return f"raw byte: {self.value:#04x}"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, RawByte):
			return NotImplemented

		return self.value == other.value


class NewObjectMarker(object):
	"""Marks the position where a new object begins."""

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}()"

	def __str__(self) -> str:
		return "new object"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, NewObjectMarker):
			return NotImplemented

		return True


class BackReference(object):
	"""An unresolved reference to an object table entry."""

	index: int

	def __init__(self, index: int) -> None:
		super().__init__()

		self.index = index

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({self.index!r})"

	def __str__(self) -> str:
		return f"<reference to #{self.index}>"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, BackReference):
			return NotImplemented

		return self.index == other.index


class Placeholder(object):
	"""Stands in for a value whose contents are not known yet."""

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}()"

	def __str__(self) -> str:
		return "placeholder"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Placeholder):
			return NotImplemented

		return True


class Empty(object):
	"""An object position that resolved to nothing (a nil object)."""

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}()"

	def __str__(self) -> str:
		return "empty"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Empty):
			return NotImplemented

		return True


DecodedValue = typing.Union[Text, Number, RawByte, Class, NewObjectMarker, BackReference, Placeholder, Empty]


class ObjectValues(object):
	"""An object table entry holding the decoded values of an embedded object."""

	values: typing.Sequence[DecodedValue]

	def __init__(self, values: typing.Sequence[DecodedValue]) -> None:
		super().__init__()

		self.values = tuple(values)

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({list(self.values)!r})"

	def __str__(self) -> str:
		return "object values: [" + ", ".join(str(value) for value in self.values) + "]"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, ObjectValues):
			return NotImplemented

		return self.values == other.values


ArchiveEntry = typing.Union[ObjectValues, Class]
