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
import io
import os
import sqlite3
import tempfile
import typing
import unittest
import unittest.mock

import imessage_typedstream.__main__
import imessage_typedstream.stream


STRING_TEST_DATA = b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x08NSString\x01\x84\x84\x08NSObject\x00\x85\x84\x01+\x0cstring value\x86"


def run_main(*args: str) -> typing.Tuple[int, str, str]:
	stdout = io.StringIO()
	stderr = io.StringIO()
	with unittest.mock.patch("sys.argv", ["imessage-typedstream", *args]):
		with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
			try:
				imessage_typedstream.__main__.main()
			except SystemExit as e:
				code = e.code
			else:
				raise AssertionError("main() returned without calling sys.exit")
	return code, stdout.getvalue(), stderr.getvalue()


class DumpTests(unittest.TestCase):
	def test_dump_entries(self) -> None:
		reader = imessage_typedstream.stream.TypedStreamReader.from_data(STRING_TEST_DATA)
		self.assertEqual(list(imessage_typedstream.__main__.dump_entries(reader)), [
			"header 040b73747265616d747970656481e803",
			"",
			"entry 0, 1 values",
			"\tclass NSObject v0",
			"entry 1, 1 values",
			"\ttext: 'string value'",
		])

	def test_dump_tables(self) -> None:
		reader = imessage_typedstream.stream.TypedStreamReader.from_data(STRING_TEST_DATA)
		for _ in reader:
			pass
		self.assertEqual(list(imessage_typedstream.__main__.dump_tables(reader)), [
			"types table:",
			"\t#0: @ (object)",
			"\t#1: inline name 'NSString'",
			"\t#2: inline name 'NSObject'",
			"\t#3: + (utf8_string)",
			"objects table:",
			"\t#0: class NSString v1",
			"\t#1: class NSObject v0",
		])


class MainTests(unittest.TestCase):
	def setUp(self) -> None:
		self.tempdir = tempfile.TemporaryDirectory()
		self.addCleanup(self.tempdir.cleanup)

	def write_file(self, name: str, data: bytes) -> str:
		path = os.path.join(self.tempdir.name, name)
		with open(path, "wb") as f:
			f.write(data)
		return path

	def test_read(self) -> None:
		path = self.write_file("body", STRING_TEST_DATA)
		code, stdout, _ = run_main("read", path)
		self.assertEqual(code, 0)
		self.assertIn("\ttext: 'string value'", stdout.splitlines())

	def test_read_hex(self) -> None:
		path = self.write_file("body.hex", STRING_TEST_DATA.hex().encode("ascii") + b"\n")
		code, stdout, _ = run_main("read", "--hex", "--tables", path)
		self.assertEqual(code, 0)
		lines = stdout.splitlines()
		self.assertIn("\tclass NSObject v0", lines)
		self.assertIn("objects table:", lines)

	def test_read_invalid(self) -> None:
		path = self.write_file("body", STRING_TEST_DATA[:20])
		code, _, stderr = run_main("read", path)
		self.assertEqual(code, 1)
		self.assertIn("Invalid typedstream data", stderr)

	def test_read_invalid_hex(self) -> None:
		path = self.write_file("body.hex", b"not hex")
		code, _, stderr = run_main("read", "--hex", path)
		self.assertEqual(code, 1)
		self.assertIn("not a valid hex string", stderr)

	def test_attachments(self) -> None:
		path = os.path.join(self.tempdir.name, "chat.db")
		with contextlib.closing(sqlite3.connect(path)) as connection:
			connection.executescript("""
				CREATE TABLE attachment (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, filename TEXT, mime_type TEXT, transfer_name TEXT, total_bytes INTEGER, hide_attachment INTEGER DEFAULT 0);
				CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
				INSERT INTO attachment (filename, mime_type, transfer_name, total_bytes, hide_attachment) VALUES ('~/a.png', 'image/png', 'a.png', 1000, 1);
				INSERT INTO message_attachment_join VALUES (7, 1);
			""")

		code, stdout, _ = run_main("attachments", path, "7")
		self.assertEqual(code, 0)
		self.assertEqual(stdout.splitlines(), ["attachment #1: a.png (image, 1000 bytes) (hidden)"])

		code, stdout, _ = run_main("attachments", path, "8")
		self.assertEqual(code, 0)
		self.assertEqual(stdout.splitlines(), ["Message 8 has no attachments"])

	def test_attachments_missing_table(self) -> None:
		path = os.path.join(self.tempdir.name, "empty.db")
		code, _, stderr = run_main("attachments", path, "1")
		self.assertEqual(code, 1)
		self.assertIn("Could not read attachments", stderr)

	def test_missing_subcommand(self) -> None:
		code, _, stderr = run_main()
		self.assertEqual(code, 2)
		self.assertIn("Missing subcommand", stderr)


if __name__ == "__main__":
	unittest.main()
