"""Tests for laad.cli."""

import json
import logging

import pytest

from laad.cli import main
from laad.container import decode_container

VALID_SOURCE = '''
display = logix.display
"Hello, World!" -> display
'''

INVALID_SOURCE = '''
display = logix.display
"Hello" ->
'''

TYPE_ERROR_SOURCE = '''
sink = class { in v: int }
"text" -> sink.v
'''


@pytest.fixture(autouse=True)
def close_log_files():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def write(tmp_path):
    def _write(content, name="hello.laad"):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)
    return _write


class TestCliCompile:

    def test_compile_success(self, write, capsys):
        rc = main(["compile", write(VALID_SOURCE)])
        assert rc == 0
        output = capsys.readouterr().out.strip()
        assert "\n" not in output
        doc = json.loads(output)
        assert doc["format"] == "LNJ"
        assert doc["unit"] == "hello"
        assert len(doc["nodes"]) == 2

    def test_compile_pretty(self, write, capsys):
        rc = main(["compile", "--pretty", write(VALID_SOURCE)])
        assert rc == 0
        output = capsys.readouterr().out
        assert "\n  " in output
        json.loads(output)

    def test_compile_to_file(self, write, tmp_path, capsys):
        target = tmp_path / "out.lnj"
        rc = main(["compile", write(VALID_SOURCE), "-o", str(target)])
        assert rc == 0
        assert capsys.readouterr().out == ""
        assert json.loads(target.read_text(encoding="utf-8"))["format"] == "LNJ"

    def test_compile_lzbs(self, write, tmp_path):
        target = tmp_path / "out.lzbs"
        rc = main(["compile", "--lzbs", write(VALID_SOURCE), "-o", str(target)])
        assert rc == 0
        doc = decode_container(target.read_bytes())
        assert doc["unit"] == "hello"

    def test_compile_parse_error(self, write, capsys):
        rc = main(["compile", write(INVALID_SOURCE)])
        assert rc == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Error:" in captured.err

    def test_compile_type_error(self, write, capsys):
        rc = main(["compile", write(TYPE_ERROR_SOURCE)])
        assert rc == 1
        assert "type mismatch" in capsys.readouterr().err

    def test_lzbs_with_oversized_literal(self, write, tmp_path, capsys):
        target = tmp_path / "out.lzbs"
        source = "d = logix.display\n99999999999999999999 -> d\n"
        rc = main(["compile", "--lzbs", write(source), "-o", str(target)])
        assert rc == 1
        assert "does not fit in 64 bits" in capsys.readouterr().err
        assert not target.exists()

    def test_compile_file_not_found(self, capsys):
        rc = main(["compile", "/nonexistent/file.laad"])
        assert rc == 1
        assert "file not found" in capsys.readouterr().err


class TestCliOptions:

    def test_config_file(self, write, tmp_path, capsys):
        config = tmp_path / "laad.yaml"
        config.write_text("unit: studio\nindent: 4\n", encoding="utf-8")
        rc = main(["compile", "--config", str(config), write(VALID_SOURCE)])
        assert rc == 0
        assert json.loads(capsys.readouterr().out)["unit"] == "studio"

    def test_bad_config(self, write, tmp_path, capsys):
        config = tmp_path / "laad.yaml"
        config.write_text("colour: blue\n", encoding="utf-8")
        rc = main(["compile", "--config", str(config), write(VALID_SOURCE)])
        assert rc == 1
        assert "unknown option(s): colour" in capsys.readouterr().err

    def test_extra_templates(self, write, tmp_path, capsys):
        templates = tmp_path / "extra.yaml"
        templates.write_text(
            "templates:\n"
            "  studio.beep:\n"
            "    ports:\n"
            "      - {name: trigger, direction: in, kind: impulse}\n",
            encoding="utf-8",
        )
        source = "start = logix.events.on_start\nstart -> studio.beep\n"
        rc = main(["compile", "--templates", str(templates), write(source)])
        assert rc == 0
        doc = json.loads(capsys.readouterr().out)
        assert "studio.beep" in [n["class"] for n in doc["nodes"]]

    def test_unknown_template_without_extra_file(self, write, capsys):
        rc = main(["compile", write("start = logix.events.on_start\nstart -> studio.beep\n")])
        assert rc == 1
        assert "unknown node template" in capsys.readouterr().err

    def test_log_file(self, write, tmp_path):
        log = tmp_path / "laad.log"
        rc = main(["compile", "--log-level", "debug", "--log-file", str(log), write(VALID_SOURCE)])
        assert rc == 0
        text = log.read_text(encoding="utf-8")
        assert "[laad.compiler][DEBUG] pass parse started" in text
        assert "compiled unit hello" in text


class TestCliCheck:

    def test_check_valid(self, write, capsys):
        rc = main(["check", write(VALID_SOURCE)])
        assert rc == 0
        assert "Valid: 2 vertices, 1 edges" in capsys.readouterr().out

    def test_check_invalid(self, write, capsys):
        rc = main(["check", write(TYPE_ERROR_SOURCE)])
        assert rc == 1


class TestCliAst:

    def test_ast_output(self, write, capsys):
        rc = main(["ast", write(VALID_SOURCE)])
        assert rc == 0
        output = capsys.readouterr().out
        assert "NodeDef" in output
        assert "Connection" in output


class TestCliGraph:

    def test_graph_output(self, write, capsys):
        rc = main(["graph", write(VALID_SOURCE)])
        assert rc == 0
        assert capsys.readouterr().out.startswith("graph TD")


class TestCliContainer:

    def test_round_trip(self, write, tmp_path, capsys):
        lnj = tmp_path / "hello.lnj"
        assert main(["compile", write(VALID_SOURCE), "-o", str(lnj)]) == 0
        original = json.loads(lnj.read_text(encoding="utf-8"))

        assert main(["compress", str(lnj)]) == 0
        lzbs = tmp_path / "hello.lzbs"
        assert f"Wrote {lzbs}" in capsys.readouterr().out
        assert lzbs.exists()

        assert main(["decompress", str(lzbs)]) == 0
        assert json.loads(capsys.readouterr().out) == original

    def test_decompress_garbage(self, tmp_path, capsys):
        bad = tmp_path / "bad.lzbs"
        bad.write_bytes(b"nope")
        rc = main(["decompress", str(bad)])
        assert rc == 1
        assert "not an LZMA stream" in capsys.readouterr().err


class TestCliNoCommand:

    def test_no_command(self, capsys):
        rc = main([])
        assert rc == 1


class TestCliDumpJson:

    def test_dump_json(self, write, tmp_path, capsys):
        lnj = tmp_path / "hello.lnj"
        assert main(["compile", write(VALID_SOURCE), "-o", str(lnj)]) == 0
        capsys.readouterr()
        rc = main(["dump-json", str(lnj)])
        assert rc == 0
        output = capsys.readouterr().out
        assert output.startswith('{\n  "format": "LNJ"')
        assert json.loads(output) == json.loads(lnj.read_text(encoding="utf-8"))

    def test_dump_json_malformed(self, tmp_path, capsys):
        bad = tmp_path / "bad.lnj"
        bad.write_text("{not json", encoding="utf-8")
        rc = main(["dump-json", str(bad)])
        assert rc == 1
        assert "Error:" in capsys.readouterr().err

    def test_dump_json_missing_file(self, capsys):
        rc = main(["dump-json", "/nonexistent/file.lnj"])
        assert rc == 1
        assert "file not found" in capsys.readouterr().err
