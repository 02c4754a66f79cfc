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


import argparse
import binascii
import contextlib
import logging
import sqlite3
import sys
import typing


from . import __version__
from . import attachment
from . import stream
from . import values


def make_subcommand_parser(subs: typing.Any, name: str, *, help: str, description: str, **kwargs: typing.Any) -> argparse.ArgumentParser:
	"""Add a subcommand parser with some slightly modified defaults to a subcommand set.

	This function is used to ensure that all subcommands use the same base configuration for their ArgumentParser.
	"""

	ap = subs.add_parser(
		name,
		formatter_class=argparse.RawDescriptionHelpFormatter,
		help=help,
		description=description,
		allow_abbrev=False,
		add_help=False,
		**kwargs,
	)

	ap.add_argument("--help", action="help", help="Display this help message and exit.")

	return ap


def read_input_data(file: str, *, hex_input: bool) -> bytes:
	if file == "-":
		data = sys.stdin.buffer.read()
	else:
		with open(file, "rb") as f:
			data = f.read()

	if hex_input:
		try:
			data = binascii.unhexlify(b"".join(data.split()))
		except (binascii.Error, ValueError) as e:
			raise ValueError(f"Input is not a valid hex string: {e}") from e

	return data


def dump_entries(reader: stream.TypedStreamReader) -> typing.Iterable[str]:
	yield f"header {reader.header.hex()}"
	yield ""
	for i, entry in enumerate(reader):
		yield f"entry {i}, {len(entry)} values"
		for value in entry:
			yield "\t" + str(value)


def describe_type_code(type_code: values.AnyTypeCode) -> str:
	if isinstance(type_code, values.TypeCode):
		return f"{chr(type_code.value)} ({type_code.name.lower()})"
	else:
		return str(type_code)


def dump_tables(reader: stream.TypedStreamReader) -> typing.Iterable[str]:
	yield "types table:"
	for i, type_list in enumerate(reader.type_table):
		yield f"\t#{i}: " + ", ".join(describe_type_code(type_code) for type_code in type_list)
	yield "objects table:"
	for i, entry in enumerate(reader.object_table):
		yield f"\t#{i}: {entry}"


def do_read(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		data = read_input_data(ns.file, hex_input=ns.hex)
	except (OSError, ValueError) as e:
		print(e, file=sys.stderr)
		sys.exit(1)

	try:
		reader = stream.TypedStreamReader.from_data(data)
		for line in dump_entries(reader):
			print(line)
		if ns.tables:
			print()
			for line in dump_tables(reader):
				print(line)
	except stream.InvalidTypedStreamError as e:
		print(f"Invalid typedstream data: {e}", file=sys.stderr)
		sys.exit(1)

	sys.exit(0)


def do_attachments(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		with contextlib.closing(sqlite3.connect(ns.database)) as connection:
			attachments = attachment.Attachment.from_message(connection, ns.message_id)
	except sqlite3.Error as e:
		print(f"Could not read attachments: {e}", file=sys.stderr)
		sys.exit(1)

	if not attachments:
		print(f"Message {ns.message_id} has no attachments")
	for att in attachments:
		line = str(att)
		if att.is_hidden:
			line += " (hidden)"
		print(line)

	sys.exit(0)


def do_diagnose(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		with contextlib.closing(sqlite3.connect(ns.database)) as connection:
			diagnostic = attachment.run_diagnostic(connection)
	except sqlite3.Error as e:
		print(f"Could not run diagnostic: {e}", file=sys.stderr)
		sys.exit(1)

	for line in diagnostic.as_lines():
		print(line)

	sys.exit(0)


def main() -> typing.NoReturn:
	"""Main function of the CLI.

	This function is a valid setuptools entry point.
	Arguments are passed in sys.argv,
	and every execution path ends with a sys.exit call.
	(setuptools entry points are also permitted to return an integer,
	which will be treated as an exit code.
	We do not use this feature and instead always call sys.exit ourselves.)
	"""

	ap = argparse.ArgumentParser(
		formatter_class=argparse.RawDescriptionHelpFormatter,
		description="""
%(prog)s is a tool for decoding the attributedBody typedstream data of
messages in the Messages database, and for inspecting the attachments that
those messages refer to.
""",
		allow_abbrev=False,
		add_help=False,
	)

	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	ap.add_argument("--version", action="version", version=__version__, help="Display version information and exit.")
	ap.add_argument("--verbose", action="store_true", help="Log every decoding step to stderr.")

	subs = ap.add_subparsers(
		dest="subcommand",
		metavar="SUBCOMMAND",
	)

	sub_read = make_subcommand_parser(
		subs,
		"read",
		help="Decode and display the values in attributedBody data.",
		description="""
Decode and display the values in attributedBody data.

Each top-level group of values is displayed as one entry. Objects that refer
to embedded values are displayed as those values, and objects that refer to
classes are displayed as the class name and version.
""",
	)
	sub_read.add_argument("--hex", action="store_true", help="The input is a hex string instead of raw binary data.")
	sub_read.add_argument("--tables", action="store_true", help="Also display the type and object tables after decoding.")
	sub_read.add_argument("file", help="The file containing the data, or - for stdin.")

	sub_attachments = make_subcommand_parser(
		subs,
		"attachments",
		help="List the attachments of a message.",
		description="""
List the attachments of a message in the Messages database, with their media
type and size.
""",
	)
	sub_attachments.add_argument("database", help="The Messages database (chat.db) to read.")
	sub_attachments.add_argument("message_id", type=int, help="The ROWID of the message.")

	sub_diagnose = make_subcommand_parser(
		subs,
		"diagnose",
		help="Check the attachment table for missing data.",
		description="""
Check the attachment table of the Messages database for attachments whose
files are missing from the filesystem.
""",
	)
	sub_diagnose.add_argument("database", help="The Messages database (chat.db) to read.")

	ns = ap.parse_args()

	logging.basicConfig(
		level=logging.DEBUG if ns.verbose else logging.WARNING,
		format="%(levelname)s:%(name)s: %(message)s",
	)

	if ns.subcommand is None:
		print("Missing subcommand", file=sys.stderr)
		sys.exit(2)
	elif ns.subcommand == "read":
		do_read(ns)
	elif ns.subcommand == "attachments":
		do_attachments(ns)
	elif ns.subcommand == "diagnose":
		do_diagnose(ns)
	else:
		print(f"Unknown subcommand: {ns.subcommand!r}", file=sys.stderr)
		sys.exit(2)


if __name__ == "__main__":
	sys.exit(main())
