import argparse
import logging
import sys
from pathlib import Path

from .config import load_settings
from .core import FileManagerApp
from .exceptions import FileManagerError

def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file next to the catalog."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "file_manager.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("cloudinary").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="File Manager: ingest, organize and search files")

    p.add_argument("--root", type=Path, default=None, help="Storage root (default: FMS_STORAGE_ROOT or app data)")
    p.add_argument("--db", type=Path, default=None, help="Custom path for SQLite DB (default: beside the storage root)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="Ingest one or more files")
    up.add_argument("paths", nargs="+", type=Path)
    up.add_argument("--folder", type=int, default=None, help="Destination folder id (default: Default folder)")

    mk = sub.add_parser("mkdir", help="Create a folder")
    mk.add_argument("name")
    mk.add_argument("--parent", type=int, default=None)

    sub.add_parser("folders", help="List folders with file and subfolder counts")

    rn = sub.add_parser("rename-folder", help="Rename a folder and rewrite descendant paths")
    rn.add_argument("folder_id", type=int)
    rn.add_argument("new_name")

    rmdir = sub.add_parser("delete-folder", help="Delete a folder")
    rmdir.add_argument("folder_id", type=int)
    rmdir.add_argument("--cascade", action="store_true", help="Also delete subfolders and files")

    se = sub.add_parser("search", help="Search the catalog")
    se.add_argument("term", nargs="?", default=None)
    se.add_argument("--tag", action="append", dest="tags", default=None)
    se.add_argument("--photos", action="store_true", help="Only photos")
    se.add_argument("--folder", type=int, default=None)
    se.add_argument("--skip", type=int, default=0)
    se.add_argument("--take", type=int, default=50)

    tg = sub.add_parser("tag", help="Add tags to a file")
    tg.add_argument("file_id", type=int)
    tg.add_argument("tags", nargs="+")
    tg.add_argument("--replace", action="store_true", help="Replace existing tags")

    rm = sub.add_parser("rm", help="Delete a file")
    rm.add_argument("file_id", type=int)
    rm.add_argument("--permanent", action="store_true")
    rm.add_argument("--no-recycle", action="store_true", help="Unlink instead of moving to the recycle bin")

    return p.parse_args(argv)

def run_command(app: FileManagerApp, args) -> int:
    if args.command == "upload":
        if len(args.paths) == 1:
            res = app.upload(args.paths[0], destination_folder_id=args.folder)
            print(f"{res.file_id}\t{'duplicate' if res.is_duplicate else 'stored'}\t{res.stored_location}")
        else:
            for res in app.upload_many(args.paths, destination_folder_id=args.folder):
                print(f"{res.file_id}\t{'duplicate' if res.is_duplicate else 'stored'}\t{res.stored_location}")
        return 0

    if args.command == "folders":
        for s in app.list_folders():
            marker = " *" if s.folder.is_default else ""
            print(f"{s.folder.id}\t{s.folder.path}{marker}\tfiles={s.file_count}\tsubfolders={s.subfolder_count}")
        return 0

    if args.command in ("mkdir", "rename-folder", "delete-folder"):
        if args.command == "mkdir":
            result = app.create_folder(args.name, args.parent)
        elif args.command == "rename-folder":
            result = app.rename_folder(args.folder_id, args.new_name)
        else:
            result = app.delete_folder(args.folder_id, cascade=args.cascade)
        if not result.success:
            logging.error(result.reason)
            return 1
        if result.folder is not None:
            print(f"{result.folder.id}\t{result.folder.path}")
        return 0

    if args.command == "search":
        found = app.search_files(args.term, args.tags, True if args.photos else None,
                                 args.folder, args.skip, args.take)
        for rec in found.items:
            print(f"{rec.id}\t{rec.file_name}\t{rec.size}\t{','.join(rec.tags)}\t{rec.path}")
        print(f"Total: {found.total}")
        return 0

    if args.command == "tag":
        ok = app.set_tags(args.file_id, args.tags) if args.replace else app.add_tags(args.file_id, args.tags)
        return 0 if ok else 1

    if args.command == "rm":
        ok = app.delete_file(args.file_id, permanent=args.permanent, move_to_recycle_bin=not args.no_recycle)
        return 0 if ok else 1

    raise ValueError(f"Unknown command: {args.command}")

def main(argv=None):
    args = parse_args(argv)

    # 1. Setup
    settings = load_settings(storage_root=args.root, db_path=args.db)
    setup_logging(Path(settings.db_path).parent, args.verbose)

    logging.info("=== File Manager Started ===")
    logging.info(f"Storage: {settings.storage_root} ({settings.backend})")
    logging.info(f"DB:      {settings.db_path}")

    # 2. Execution
    app = FileManagerApp(settings)
    try:
        code = run_command(app, args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        code = 1
    except FileManagerError as e:
        logging.error(f"{args.command} failed: {e}")
        code = 1
    except Exception:
        logging.exception(f"Fatal error during {args.command}.")
        code = 1
    finally:
        app.close()
    sys.exit(code)

if __name__ == "__main__":
    main()
