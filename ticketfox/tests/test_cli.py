"""Tests for the tfx command line."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ticketfox.cli.main import build_parser, main
from ticketfox.domain.layout import NormalizedBoundingBox, ZoneDefinition, ZoneType
from ticketfox.runtime import TemplateStore, set_log_level


def test_parser_knows_every_command() -> None:
    parser = build_parser()

    assert parser.parse_args(["parse", "r.jpg", "--no-learn"]).no_learn
    assert parser.parse_args(["parse-ocr", "r.json", "--json"]).json
    assert parser.parse_args(["parse-text", "-", "--merchant", "dia"]).merchant == "dia"
    assert parser.parse_args(["serve", "--port", "9000"]).port == 9000
    assert parser.parse_args(["templates", "show", "dia"]).merchant_id == "dia"


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "Spanish receipt parser" in capsys.readouterr().out


def test_parse_text_prints_json(tmp_path: Path, capsys) -> None:
    source = tmp_path / "ticket.txt"
    source.write_text("MERCADONA\n2 QUESO COTTAGE 1,35 2,70\nTOTAL 2,70\n", encoding="utf-8")

    assert main(["parse-text", str(source), "--json"]) == 0

    result = json.loads(capsys.readouterr().out)
    assert result["parser"] == "chain"
    assert result["receipt"]["total"] == "2.70"


def test_parse_text_prints_summary(tmp_path: Path, capsys) -> None:
    source = tmp_path / "ticket.txt"
    source.write_text("FRUTERIA LA PLAZA\nPAN BARRA 0,95\nTOTAL 0,95\n", encoding="utf-8")

    assert main(["parse-text", str(source)]) == 0

    out = capsys.readouterr().out
    assert "PARSED RECEIPT" in out
    assert "Store:      FRUTERIA LA PLAZA" in out


def test_missing_inputs_exit_with_one(tmp_path: Path, capsys) -> None:
    assert main(["parse-text", str(tmp_path / "missing.txt")]) == 1
    assert main(["parse-ocr", str(tmp_path / "missing.json"), "--no-learn"]) == 1
    assert main(["parse", str(tmp_path / "missing.jpg"), "--no-learn"]) == 1
    assert "not found" in capsys.readouterr().out


def test_templates_commands(project_root: Path, capsys) -> None:
    assert main(["templates", "list"]) == 0
    assert "No learned templates." in capsys.readouterr().out

    zone = ZoneDefinition("auto-total-1", ZoneType.TOTAL, NormalizedBoundingBox(0.1, 0.8, 0.8, 0.05))
    TemplateStore().upsert("dia", zones=[zone], store_name="Dia")

    assert main(["templates", "list"]) == 0
    assert "dia" in capsys.readouterr().out
    assert main(["templates", "show", "dia"]) == 0
    assert json.loads(capsys.readouterr().out)["store_name"] == "Dia"
    assert main(["templates", "show", "nadie"]) == 1
    assert main(["templates"]) == 1


def test_verbose_flag_enables_debug_logging(tmp_path: Path) -> None:
    source = tmp_path / "ticket.txt"
    source.write_text("DIA\nPAN 0,95\nTOTAL 0,95\n", encoding="utf-8")

    try:
        assert main(["-v", "parse-text", str(source)]) == 0
        assert logging.getLogger("ticketfox").level == logging.DEBUG
    finally:
        set_log_level(logging.INFO)
