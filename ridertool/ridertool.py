#!/usr/bin/env python3
import sys
import logging

from riders import parse, RidersArchiveError
from pathlib import Path
from argparse import ArgumentParser, FileType

argparser = ArgumentParser(description="List and extract Sonic Riders archives")
argparser.add_argument("file", type=FileType("rb"))
argparser.add_argument("out", type=Path, nargs="?",
                       help="extract files to OUT/<group id>/<index>.bin")
argparser.add_argument("-g", "--group", type=int, action="append", dest="groups",
                       metavar="ID", help="only this group id, repeatable")
argparser.add_argument("-v", "--verbose", action="store_true")

def extract(archive, group, index, out):
    data = archive.get_file(group, index)
    path = out / str(group.id) / ("%d.bin" % index)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as fd:
        fd.write(data)

def main(argv=None):
    args = argparser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")

    status = 0
    with args.file as fd:
        try:
            archive = parse(fd)
            groups = archive.groups
            if args.groups:
                groups = [archive.group(x) for x in args.groups]
        except RidersArchiveError as e:
            sys.stderr.write("%s: %s\n" % (fd.name, e))
            return 1
        except KeyError as e:
            sys.stderr.write("%s: no group with id %s\n" % (fd.name, e.args[0]))
            return 1

        print("Group", "Index", "Offset", "Size", sep='\t')
        seen = set()
        for group in groups:
            # same folder as the earlier group, like get_all_files keeping the later one
            if args.out is not None and group.id in seen:
                logging.warning("group id %d repeats, its files overwrite the earlier group's", group.id)
            seen.add(group.id)
            for index, entry in enumerate(group.files):
                # absent files have no meaningful size
                present = entry.offset > 0
                print(group.id, index, hex(entry.offset), entry.size if present else 0, sep='\t')
                if args.out is None or not present:
                    continue
                try:
                    extract(archive, group, index, args.out)
                except RidersArchiveError as e:
                    logging.warning("group %d file %d: %s", group.id, index, e)
                    status = 1

    return status

if __name__ == "__main__":
    sys.exit(main())
