from pathlib import Path


def write_lines_file(file_path: str | Path, lines: list[str]) -> None:
    """Write lines to a file, restoring the newlines they were split on

    Args:
        file_path (str | Path): The path to the file to write
        lines (list[str]): The lines to write
    """
    with open(file_path, "w", encoding="utf-8") as f:
        for line in lines[:-1]:
            f.write(line + "\n")
        if lines:
            f.write(lines[-1])


def read_text_file(file_path: str | Path) -> str:
    """Read a UTF-8 text file

    Args:
        file_path (str | Path): The path to the file to read
    """
    with open(file_path, "r", encoding="utf-8") as f:
        return f.read()
