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


"""Attachment rows of the Messages database.

Decoded attributedBody data only contains placeholders for attachments.
The attachment metadata itself lives in the ``attachment`` table
and is linked to messages through ``message_attachment_join``.
"""


import enum
import logging
import os
import pathlib
import sqlite3
import typing


__all__ = [
	"ATTACHMENT_TABLE",
	"MISSING_NAME",
	"MediaType",
	"classify_mime_type",
	"Attachment",
	"AttachmentDiagnostic",
	"run_diagnostic",
]


logger = logging.getLogger(__name__)

ATTACHMENT_TABLE = "attachment"

# Display name for attachments that have neither a transfer name nor a filename.
MISSING_NAME = "Attachment missing name metadata!"


class MediaType(enum.Enum):
	"""Broad category of an attachment, based on the major type of its MIME type."""

	IMAGE = "image"
	VIDEO = "video"
	AUDIO = "audio"
	TEXT = "text"
	APPLICATION = "application"
	OTHER = "other"
	UNKNOWN = "unknown"


_MEDIA_TYPES_BY_MAJOR_TYPE: typing.Mapping[str, MediaType] = {
	"image": MediaType.IMAGE,
	"video": MediaType.VIDEO,
	"audio": MediaType.AUDIO,
	"text": MediaType.TEXT,
	"application": MediaType.APPLICATION,
}


def classify_mime_type(mime_type: typing.Optional[str]) -> MediaType:
	"""Classify a MIME type string by its major type (the part before the first ``/``).

	A MIME type without a ``/`` is classified by the whole string.

	:return: :attr:`MediaType.UNKNOWN` if there is no MIME type at all,
		or :attr:`MediaType.OTHER` if the major type isn't one of the known ones.
	"""

	if mime_type is None:
		return MediaType.UNKNOWN

	major_type, _, _ = mime_type.partition("/")
	return _MEDIA_TYPES_BY_MAJOR_TYPE.get(major_type, MediaType.OTHER)


def _row_value(row: sqlite3.Row, column: str, default: typing.Any = None) -> typing.Any:
	# Older databases lack some columns, and NULL means the same as a missing value.
	if column not in row.keys():
		return default
	value = row[column]
	return default if value is None else value


class Attachment(object):
	"""A single row of the ``attachment`` table (only the commonly used columns)."""

	rowid: int
	filename: typing.Optional[str]
	mime_type: typing.Optional[str]
	transfer_name: typing.Optional[str]
	total_bytes: int
	hide_attachment: int

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "Attachment":
		"""Create an attachment from a query result row.

		The row must come from a connection whose ``row_factory`` is :class:`sqlite3.Row`.
		"""

		return cls(
			rowid=row["rowid"],
			filename=_row_value(row, "filename"),
			mime_type=_row_value(row, "mime_type"),
			transfer_name=_row_value(row, "transfer_name"),
			total_bytes=_row_value(row, "total_bytes", 0),
			hide_attachment=_row_value(row, "hide_attachment", 0),
		)

	@classmethod
	def from_message(cls, connection: sqlite3.Connection, message_id: int) -> typing.List["Attachment"]:
		"""Get all attachments of a single message, in the order they are stored in the join table.

		A join row whose attachment row has been deleted still produces an attachment,
		with only its ``rowid`` set.

		:param connection: An open connection to the Messages database.
		:param message_id: The ``ROWID`` of the message.
		:raise sqlite3.Error: If the query fails.
		"""

		cursor = connection.cursor()
		try:
			# Set on the cursor so that the caller's connection is left as it is.
			cursor.row_factory = sqlite3.Row
			cursor.execute(
				f"""
				SELECT j.attachment_id AS rowid, a.* FROM message_attachment_join j
					LEFT JOIN {ATTACHMENT_TABLE} AS a ON j.attachment_id = a.ROWID
				WHERE j.message_id = ?
				ORDER BY j.ROWID
				""",
				(message_id,),
			)
			attachments = [cls.from_row(row) for row in cursor]
		finally:
			cursor.close()

		logger.debug("Found %d attachment(s) for message %d", len(attachments), message_id)
		return attachments

	def __init__(
		self,
		rowid: int,
		filename: typing.Optional[str] = None,
		mime_type: typing.Optional[str] = None,
		transfer_name: typing.Optional[str] = None,
		total_bytes: int = 0,
		hide_attachment: int = 0,
	) -> None:
		super().__init__()

		self.rowid = rowid
		self.filename = filename
		self.mime_type = mime_type
		self.transfer_name = transfer_name
		self.total_bytes = total_bytes
		self.hide_attachment = hide_attachment

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(rowid={self.rowid!r}, filename={self.filename!r}, mime_type={self.mime_type!r}, transfer_name={self.transfer_name!r}, total_bytes={self.total_bytes!r}, hide_attachment={self.hide_attachment!r})"

	def __str__(self) -> str:
		return f"attachment #{self.rowid}: {self.display_name} ({self.media_type.value}, {self.total_bytes} bytes)"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Attachment):
			return NotImplemented

		return (
			self.rowid == other.rowid
			and self.filename == other.filename
			and self.mime_type == other.mime_type
			and self.transfer_name == other.transfer_name
			and self.total_bytes == other.total_bytes
			and self.hide_attachment == other.hide_attachment
		)

	@property
	def is_hidden(self) -> bool:
		return bool(self.hide_attachment)

	@property
	def media_type(self) -> MediaType:
		return classify_mime_type(self.mime_type)

	@property
	def path(self) -> typing.Optional[pathlib.PurePath]:
		"""The attachment's file path as stored in the database (possibly starting with ``~``)."""

		if self.filename is None:
			return None
		return pathlib.PurePath(self.filename)

	@property
	def extension(self) -> typing.Optional[str]:
		"""The file extension without the leading dot, or ``None`` if there is no filename or no extension."""

		path = self.path
		if path is None or not path.suffix:
			return None
		return path.suffix[1:]

	@property
	def display_name(self) -> str:
		"""A reasonable name for the attachment:
		the name it was transferred with if known,
		otherwise the stored filename.
		"""

		if self.transfer_name is not None:
			return self.transfer_name
		elif self.filename is not None:
			return self.filename
		else:
			return MISSING_NAME

	def resolved_path(self, home: typing.Optional[str] = None) -> typing.Optional[pathlib.Path]:
		"""The attachment's file path with ``~`` replaced by the home directory.

		:param home: The home directory to use. Defaults to the current user's home directory.
		"""

		if self.filename is None:
			return None
		if home is None:
			home = os.path.expanduser("~")
		return pathlib.Path(self.filename.replace("~", home))


class AttachmentDiagnostic(object):
	"""Summary of attachment rows whose data is missing."""

	missing_files: int
	text_change_tokens: int

	def __init__(self, missing_files: int, text_change_tokens: int) -> None:
		super().__init__()

		self.missing_files = missing_files
		self.text_change_tokens = text_change_tokens

	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(missing_files={self.missing_files!r}, text_change_tokens={self.text_change_tokens!r})"

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, AttachmentDiagnostic):
			return NotImplemented

		return self.missing_files == other.missing_files and self.text_change_tokens == other.text_change_tokens

	@property
	def has_problems(self) -> bool:
		return self.missing_files > 0 or self.text_change_tokens > 0

	def as_lines(self) -> typing.Iterable[str]:
		if not self.has_problems:
			yield "No missing attachment data"
			return

		yield "Missing attachment data:"
		if self.missing_files > 0:
			yield f"\tMissing files: {self.missing_files}"
		if self.text_change_tokens > 0:
			yield f"\tck_server_change_token_blob: {self.text_change_tokens}"


def run_diagnostic(connection: sqlite3.Connection, home: typing.Optional[str] = None) -> AttachmentDiagnostic:
	"""Check the attachment table for rows whose data is missing.

	Counts attachments whose file doesn't exist on disk,
	and rows whose ``ck_server_change_token_blob`` has been stored as text instead of a blob.
	Rows without a filename are not counted as missing.

	:param home: The home directory to substitute for ``~`` in filenames.
		Defaults to the current user's home directory.
	:raise sqlite3.Error: If a query fails.
	"""

	columns = {row[1] for row in connection.execute(f"PRAGMA table_info({ATTACHMENT_TABLE})")}
	if "ck_server_change_token_blob" in columns:
		(text_change_tokens,) = connection.execute(
			f"SELECT count(ROWID) FROM {ATTACHMENT_TABLE} WHERE typeof(ck_server_change_token_blob) == 'text'"
		).fetchone()
	else:
		text_change_tokens = 0

	missing_files = 0
	for (filename,) in connection.execute(f"SELECT filename FROM {ATTACHMENT_TABLE}"):
		if filename is None:
			continue
		path = Attachment(rowid=0, filename=filename).resolved_path(home)
		if path is not None and not path.exists():
			logger.debug("Attachment file is missing: %s", path)
			missing_files += 1

	return AttachmentDiagnostic(missing_files, text_change_tokens)
