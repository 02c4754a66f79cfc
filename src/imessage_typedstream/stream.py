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


import contextlib
import logging
import os
import sys
import typing

from . import tables
from . import values
from .errors import InvalidTypedStreamError, UnexpectedEndOfStream, InvalidText, UnresolvedReference, MalformedClassChain

if sys.version_info < (3, 8):
	from typing_extensions import Literal
else:
	from typing import Literal


__all__ = [
	"START",
	"EMPTY",
	"END",
	"ENCODING_DETECTED",
	"REFERENCE_TAG",
	"HEADER_LENGTH",
	"MAX_NESTING_DEPTH",
	"InvalidTypedStreamError",
	"UnexpectedEndOfStream",
	"InvalidText",
	"UnresolvedReference",
	"MalformedClassChain",
	"LengthOrReference",
	"classify_length_or_reference",
	"ByteCursor",
	"Entry",
	"TypedStreamReader",
	"parse_data",
	"parse_file",
]


logger = logging.getLogger(__name__)

# The attributedBody blobs use a simplified view of the typedstream format,
# in which every marker and every number is a single unsigned byte.
# The full format (with multi-byte integers and signed head bytes) is not needed for them.

# Indicates the start of a new object, class or type list.
START = 0x84
# No data, e. g. the end of a chain of superclasses or a nil object.
EMPTY = 0x85
# Indicates the end of an object.
END = 0x86
# Indicates an embedded block of type-prefixed values inside a class chain.
ENCODING_DETECTED = 0x95
# Bytes at or above this value are back-references rather than literal lengths.
# The first back-reference (REFERENCE_TAG itself) refers to table index 0.
REFERENCE_TAG = 0x92

# Streamer version, signature string and system version.
# These are always the same for attributedBody data and are not interpreted.
HEADER_LENGTH = 16

# Limits how deeply embedded data and objects may be nested.
MAX_NESTING_DEPTH = 100


def _decode_reference_number(encoded: int) -> int:
	"""Decode a reference number (as stored in a typedstream) to a regular zero-based index.

	Bytes below :data:`REFERENCE_TAG` produce a negative index,
	which can never be resolved.
	"""

	return encoded - REFERENCE_TAG


class LengthOrReference(typing.NamedTuple):
	"""Result of :func:`classify_length_or_reference`."""

	kind: Literal["length", "reference"]
	value: int


def classify_length_or_reference(byte: int) -> LengthOrReference:
	"""Decide what the byte after a class chain's start marker means.

	The same byte position holds either the length of a literal class name
	or a back-reference to an already registered class.
	The two are told apart only by magnitude:
	anything at or above :data:`REFERENCE_TAG` is a reference.

	:param byte: The raw byte value (0 to 255).
	:return: A ``"length"`` with the byte as the name length,
		or a ``"reference"`` with the decoded object table index.
	"""

	if byte >= REFERENCE_TAG:
		return LengthOrReference("reference", _decode_reference_number(byte))
	else:
		return LengthOrReference("length", byte)


class ByteCursor(object):
	"""Bounds-checked sequential reader over an in-memory buffer.

	The buffer is only referenced, never copied or modified.
	Every read either consumes exactly the requested number of bytes
	or raises :class:`UnexpectedEndOfStream` without consuming anything.
	"""

	_data: bytes
	_offset: int

	def __init__(self, data: bytes) -> None:
		super().__init__()

		self._data = data
		self._offset = 0

	def __repr__(self) -> str:
		return f"<{type(self).__module__}.{type(self).__qualname__} at {id(self):#x}: offset {self._offset} of {len(self._data)}>"

	@property
	def offset(self) -> int:
		return self._offset

	@property
	def length(self) -> int:
		return len(self._data)

	@property
	def remaining(self) -> int:
		return len(self._data) - self._offset

	@property
	def at_end(self) -> bool:
		return self._offset >= len(self._data)

	def _check_available(self, byte_count: int) -> None:
		if byte_count < 0:
			raise ValueError(f"Byte count cannot be negative: {byte_count}")
		elif byte_count > self.remaining:
			raise UnexpectedEndOfStream(f"Attempted to read {byte_count} bytes of data at offset {self._offset}, but only {self.remaining} bytes are left")

	def peek_byte(self) -> int:
		"""Return the byte at the current offset without consuming it."""

		self._check_available(1)
		return self._data[self._offset]

	def peek_next_byte(self) -> int:
		"""Return the byte after the current one without consuming anything."""

		self._check_available(2)
		return self._data[self._offset + 1]

	def read_byte(self) -> int:
		self._check_available(1)
		byte = self._data[self._offset]
		self._offset += 1
		return byte

	def read_bytes(self, byte_count: int) -> bytes:
		self._check_available(byte_count)
		data = bytes(self._data[self._offset:self._offset + byte_count])
		self._offset += byte_count
		return data

	def read_utf8(self, byte_count: int) -> str:
		"""Read byte_count bytes and decode them as UTF-8.

		The bytes are consumed even if they turn out not to be valid UTF-8.
		"""

		start = self._offset
		data = self.read_bytes(byte_count)
		try:
			return data.decode("utf-8")
		except UnicodeDecodeError as e:
			raise InvalidText(f"Text of {byte_count} bytes at offset {start} is not valid UTF-8: {data!r}") from e

	def skip(self, byte_count: int) -> None:
		self._check_available(byte_count)
		self._offset += byte_count


Entry = typing.List[values.DecodedValue]


class TypedStreamReader(typing.Iterator[Entry]):
	"""Decodes the values stored in attributedBody typedstream data.

	Iterating over a reader yields one entry (a list of decoded values) per top-level group of typed values.
	The data is decoded lazily as the reader is iterated.
	A reader can only be iterated once -
	to decode the same data again, create a new reader.

	Each reader has its own :attr:`type_table` and :attr:`object_table`,
	which are filled while decoding and can be inspected afterwards.
	"""

	cursor: ByteCursor
	header: bytes
	type_table: tables.TypeTable
	object_table: tables.ObjectTable

	_nesting_depth: int
	_entries_iterator: typing.Iterator[Entry]

	@classmethod
	def from_data(cls, data: bytes) -> "TypedStreamReader":
		"""Create a reader for the given typedstream data."""

		return cls(data)

	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike]) -> "TypedStreamReader":
		"""Read the typedstream file at the given path and create a reader for its contents."""

		with open(filename, "rb") as f:
			return cls(f.read())

	def __init__(self, data: bytes) -> None:
		"""Create a :class:`TypedStreamReader` for the given data.

		:param data: The complete typedstream data, including the header.
		:raise UnexpectedEndOfStream: If the data is too short to contain a header.
		"""

		super().__init__()

		self.cursor = ByteCursor(data)
		self.type_table = tables.TypeTable()
		self.object_table = tables.ObjectTable()
		self._nesting_depth = 0

		self.header = self.cursor.read_bytes(HEADER_LENGTH)
		self._entries_iterator = self._read_all_entries()

	def __repr__(self) -> str:
		return f"<{type(self).__module__}.{type(self).__qualname__} at {id(self):#x}: offset {self.cursor.offset} of {self.cursor.length}, {len(self.type_table)} types, {len(self.object_table)} objects>"

	def __iter__(self) -> typing.Iterator[Entry]:
		return self

	def __next__(self) -> Entry:
		return next(self._entries_iterator)

	@contextlib.contextmanager
	def _nested(self) -> typing.Iterator[None]:
		if self._nesting_depth >= MAX_NESTING_DEPTH:
			raise MalformedClassChain(f"Data is nested more than {MAX_NESTING_DEPTH} levels deep at offset {self.cursor.offset}")

		self._nesting_depth += 1
		try:
			yield
		finally:
			self._nesting_depth -= 1

	def _read_pointer(self) -> int:
		"""Read a single-byte back-reference and decode it to a table index.

		The index is not checked - that happens when it is resolved.
		"""

		return _decode_reference_number(self.cursor.read_byte())

	def _read_type_codes(self) -> typing.List[values.AnyTypeCode]:
		"""Read a literal type list (a length byte followed by that many type code bytes)."""

		length = self.cursor.read_byte()
		return [values.type_code_from_byte(byte) for byte in self.cursor.read_bytes(length)]

	def _read_type_list(self) -> typing.Sequence[values.AnyTypeCode]:
		"""Determine the types of the values that follow.

		The type list is either stored literally (and registered in the type table),
		referenced from the type table,
		or empty if the current object ends here.
		"""

		head = self.cursor.peek_byte()
		if head == START:
			self.cursor.skip(1)
			type_list = self._read_type_codes()
			index = self.type_table.register(type_list)
			logger.debug("Registered type list #%d: %r", index, type_list)
			return type_list
		elif head == END:
			logger.debug("End of current object at offset %d", self.cursor.offset)
			return []
		else:
			# Homogeneous containers (e. g. dictionaries) repeat the reference byte,
			# so collapse such a run to the last byte of it.
			while self.cursor.remaining > 1 and self.cursor.peek_byte() == self.cursor.peek_next_byte():
				self.cursor.skip(1)

			index = self._read_pointer()
			type_list = self.type_table.resolve(index)
			logger.debug("Referenced type list #%d: %r", index, type_list)
			return type_list

	def _read_embedded_data(self) -> typing.List[values.DecodedValue]:
		"""Read a nested group of type-prefixed values.

		The group begins with a marker byte that carries no information and is skipped.
		"""

		with self._nested():
			self.cursor.skip(1)
			type_list = self._read_type_list()
			return self._read_values(type_list)

	def _read_class(self) -> typing.Optional[int]:
		"""Read a chain of classes.

		A chain consists of any number of literally stored classes,
		each one followed by the next,
		and is terminated by an empty marker, a back-reference, or an embedded block of values.
		Every literal class is registered in the object table
		(and its name in the type table)
		as soon as it has been read.

		:return: If any class was read literally in this chain,
			the index of the entry registered last once the chain has ended
			(the innermost class, or the embedded values that terminated the chain).
			Otherwise the index that the terminator resolved to,
			or ``None`` if the chain is empty and nothing has been registered yet.
		"""

		read_literal_class = False

		while True:
			if self.cursor.at_end:
				raise MalformedClassChain(f"Class chain is not terminated before the end of the data (offset {self.cursor.offset})")

			head = self.cursor.peek_byte()
			if head != START:
				break

			# Nested headers may repeat the start marker - they all count as one.
			while not self.cursor.at_end and self.cursor.peek_byte() == START:
				self.cursor.skip(1)
			if self.cursor.at_end:
				raise MalformedClassChain(f"Class chain ends after a start marker (offset {self.cursor.offset})")

			length_or_reference = classify_length_or_reference(self.cursor.read_byte())
			if length_or_reference.kind == "reference":
				referenced = self.object_table.resolve(length_or_reference.value)
				logger.debug("Referenced class #%d: %s", length_or_reference.value, referenced)
				if read_literal_class:
					return len(self.object_table) - 1
				return length_or_reference.value

			name = self.cursor.read_utf8(length_or_reference.value)
			version = self.cursor.read_byte()
			self.type_table.register([values.InlineName(name)])
			index = self.object_table.register(values.Class(name, version))
			logger.debug("Registered class #%d: %s v%d", index, name, version)
			read_literal_class = True

		terminator_index: typing.Optional[int]
		if head == EMPTY:
			self.cursor.skip(1)
			logger.debug("End of class chain at offset %d", self.cursor.offset)
			terminator_index = len(self.object_table) - 1 if len(self.object_table) else None
		elif head == ENCODING_DETECTED:
			embedded = self._read_embedded_data()
			terminator_index = self.object_table.register(values.ObjectValues(embedded))
			logger.debug("Registered embedded object #%d: %r", terminator_index, embedded)
		else:
			terminator_index = self._read_pointer()
			referenced = self.object_table.resolve(terminator_index)
			logger.debug("Referenced object #%d: %s", terminator_index, referenced)

		if read_literal_class:
			return len(self.object_table) - 1
		return terminator_index

	def _read_object(self) -> typing.Optional[values.ArchiveEntry]:
		"""Read an object value, which is either nil or resolves to an object table entry."""

		if self.cursor.peek_byte() == EMPTY:
			self.cursor.skip(1)
			logger.debug("Nil object at offset %d", self.cursor.offset)
			return None

		index = self._read_class()
		if index is None:
			return None
		return self.object_table.resolve(index)

	def _read_values(self, type_list: typing.Iterable[values.AnyTypeCode]) -> typing.List[values.DecodedValue]:
		"""Read one value for each type in the type list.

		Values of embedded data and of objects that resolve to embedded values
		are spliced into the result,
		so the result may contain more values than there are types.
		"""

		decoded: typing.List[values.DecodedValue] = []

		for type_code in type_list:
			if type_code is values.TypeCode.UTF8_STRING:
				length = self.cursor.read_byte()
				decoded.append(values.Text(self.cursor.read_utf8(length)))
			elif type_code is values.TypeCode.EMBEDDED_DATA:
				decoded.extend(self._read_embedded_data())
			elif type_code is values.TypeCode.OBJECT:
				obj = self._read_object()
				if obj is None:
					decoded.append(values.Empty())
				elif isinstance(obj, values.ObjectValues):
					decoded.extend(obj.values)
				else:
					decoded.append(obj)
			elif type_code in {values.TypeCode.SIGNED_INT, values.TypeCode.UNSIGNED_INT}:
				# Both integer types are stored as a single byte in attributedBody data.
				decoded.append(values.Number(self.cursor.read_byte()))
			elif isinstance(type_code, values.InlineName):
				decoded.append(values.Text(type_code.name))
			elif isinstance(type_code, values.UnknownType):
				decoded.append(values.RawByte(type_code.byte))
			else:
				raise AssertionError(f"Unhandled type code: {type_code!r}")

		return decoded

	def _read_all_entries(self) -> typing.Iterator[Entry]:
		"""Iteratively read all top-level groups of values in the data.

		End of object markers between groups are skipped.
		"""

		while not self.cursor.at_end:
			if self.cursor.peek_byte() == END:
				self.cursor.skip(1)
				continue

			type_list = self._read_type_list()
			yield self._read_values(type_list)


def parse_data(data: bytes) -> typing.List[Entry]:
	"""Decode all entries in the given typedstream data.

	:raise InvalidTypedStreamError: If the data is malformed or truncated.
	"""

	return list(TypedStreamReader.from_data(data))


def parse_file(path: typing.Union[str, bytes, os.PathLike]) -> typing.List[Entry]:
	"""Decode all entries in the typedstream file at the given path.

	:raise InvalidTypedStreamError: If the file's data is malformed or truncated.
	"""

	return list(TypedStreamReader.open(path))
