import io
from pathlib import Path

from sinks import backup_file, claim_filename, emit, safe_filename, write_csv, write_text


def test_safe_filename_replaces_non_alphanumerics() -> None:
    assert safe_filename("Weekly sync: Q1/Q2") == "Weekly_sync__Q1_Q2"


def test_safe_filename_lowercase_and_fallback() -> None:
    assert safe_filename("Hello World", lower=True) == "hello_world"
    assert safe_filename("   ") == "untitled"


def test_claim_filename_disambiguates_colliding_titles() -> None:
    taken: set[str] = set()

    first = claim_filename(f"{safe_filename('Foo!')}.md", "book-1", taken)
    second = claim_filename(f"{safe_filename('Foo?')}.md", "book-2", taken)
    third = claim_filename("Foo_.md", "book-2", taken)

    assert first == "Foo_.md"
    assert second.startswith("Foo__") and second.endswith(".md")
    assert len(second) == len("Foo__12345678.md")
    assert third not in (first, second)
    assert taken == {first, second, third}


def test_claim_filename_is_deterministic_for_the_same_key() -> None:
    assert claim_filename("a.md", "x", {"a.md"}) == claim_filename("a.md", "x", {"a.md"})


def test_write_text_creates_parent_directories(tmp_path: Path) -> None:
    path = write_text(tmp_path / "a" / "b" / "out.md", "# Title\n")

    assert path.read_text(encoding="utf-8") == "# Title\n"


def test_emit_to_stream_adds_trailing_newline() -> None:
    stream = io.StringIO()

    emit('{"a": 1}', stream=stream)

    assert stream.getvalue() == '{"a": 1}\n'


def test_emit_to_file(tmp_path: Path) -> None:
    target = tmp_path / "out.json"

    emit("content", str(target))

    assert target.read_text(encoding="utf-8") == "content"


def test_write_csv_uses_fixed_column_order() -> None:
    stream = io.StringIO()

    write_csv(
        [{"Inflow": "", "Date": "2024-03-05", "Payee": "Shop, Inc", "Memo": "m", "Outflow": "12.00"}],
        ["Date", "Payee", "Memo", "Outflow", "Inflow"],
        stream,
    )

    assert stream.getvalue() == 'Date,Payee,Memo,Outflow,Inflow\n2024-03-05,"Shop, Inc",m,12.00,\n'


def test_backup_file_mirrors_directory_structure(tmp_path: Path) -> None:
    root = tmp_path / "docs"
    source = root / "sub" / "note.txt"
    source.parent.mkdir(parents=True)
    source.write_text("original", encoding="utf-8")

    backup = backup_file(source, root / ".backups", root=root)

    assert backup.parent == root / ".backups" / "sub"
    assert backup.name.startswith("note.txt.")
    assert backup.name.endswith(".backup")
    assert backup.read_text(encoding="utf-8") == "original"


def test_backup_file_names_never_collide(tmp_path: Path) -> None:
    source = tmp_path / "note.txt"
    source.write_text("x", encoding="utf-8")

    first = backup_file(source, tmp_path / "b")
    second = backup_file(source, tmp_path / "b")

    assert first != second
