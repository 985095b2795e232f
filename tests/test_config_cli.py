import csv
import logging
from types import SimpleNamespace

import pandas as pd
import pytest

from contact_import import import_preview
from contact_import.common import InMemoryContactStore, build_engine, load_config
from contact_import.logging_utils import configure_logging
from contact_import.models import Contact
from contact_import.workflow import WizardStep


def _args(**overrides):
    values = {
        "config": None,
        "input": None,
        "existing_csv": None,
        "out_dir": None,
        "default_phone_region": None,
        "log_level": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_load_config_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config(_args())
    assert config.limits.max_file_bytes == 10 * 1024 * 1024
    assert config.limits.max_batch_size == 100
    assert config.deletion.grace_seconds == 5.0
    assert config.normalization.default_phone_region == "ID"
    assert config.logging.level == "WARNING"
    assert config.outputs.dir.resolve() == tmp_path.resolve()


def test_load_config_yaml_and_overrides(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "inputs:",
                "  input: people.csv",
                "outputs:",
                f"  dir: {tmp_path / 'out'}",
                "limits:",
                "  max_batch_size: 25",
                "deletion:",
                "  grace_seconds: 0",
                "normalization:",
                "  default_phone_region: sg",
                "logging:",
                "  level: info",
                "  format: '%(levelname)s %(message)s'",
            ]
        ),
        encoding="utf-8",
    )
    config = load_config(_args(config=str(config_path), log_level="debug"))
    assert config.inputs["input"] == "people.csv"
    assert config.outputs.dir == tmp_path / "out"
    assert config.limits.max_batch_size == 25
    assert config.deletion.grace_seconds == 0.0
    assert config.normalization.default_phone_region == "SG"
    assert config.logging.level == "DEBUG"
    assert config.logging.format == "%(levelname)s %(message)s"

    config_path.write_text("limits:\n  max_batch_size: 0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(_args(config=str(config_path)))


def test_configure_logging_precedence(monkeypatch):
    package_logger = logging.getLogger("contact_import")
    monkeypatch.setattr(package_logger, "level", package_logger.level)
    root = logging.getLogger()
    root_level = root.level
    config = load_config(_args(log_level="error"))
    monkeypatch.delenv("CONTACT_IMPORT_LOG_LEVEL", raising=False)
    assert configure_logging(config) == logging.ERROR
    assert configure_logging(config, level_override="info") == logging.INFO
    monkeypatch.setenv("CONTACT_IMPORT_LOG_LEVEL", "debug")
    assert configure_logging(config, level_override="info") == logging.DEBUG
    assert package_logger.level == logging.DEBUG
    assert root.level == root_level


def test_build_engine_wires_config(tmp_path):
    config = load_config(_args(out_dir=str(tmp_path)))
    config.deletion.grace_seconds = 1.5
    existing = [Contact(id="c1", full_name="Budi", phone="0811")]
    engine = build_engine(config, InMemoryContactStore(), contacts=existing)
    assert engine.deletions.grace_seconds == 1.5
    assert engine.client.max_batch_size == 100
    session = engine.new_session()
    assert session.max_file_bytes == config.limits.max_file_bytes
    engine.shutdown()
    assert engine.sessions == []
    assert engine.collection.ids() == ["c1"]


def test_engine_forgets_closed_and_cancelled_sessions(tmp_path):
    engine = build_engine(load_config(_args(out_dir=str(tmp_path))), InMemoryContactStore())
    first, second, third = engine.new_session(), engine.new_session(), engine.new_session()
    first.cancel()
    assert engine.sessions == [second, third]
    second.step = WizardStep.RESULTS
    second.close()
    assert engine.sessions == [third]
    first.cancel()
    assert engine.sessions == [third]


def test_import_preview_writes_safe_and_conflict_files(tmp_path, capsys):
    source = tmp_path / "import.csv"
    source.write_text(
        "Nama;HP;Email;Perusahaan\n"
        "Budi;6281234567890;;Initech\n"
        "Sari;081399998888;sari@example.com;\n",
        encoding="utf-8",
    )
    existing = tmp_path / "existing.csv"
    existing.write_text(
        "id,Name,Phone,Email\nc1,Budi Santoso,6281234567890,budi@example.com\n",
        encoding="utf-8",
    )
    out_dir = tmp_path / "out"

    code = import_preview.main(
        [
            "--input",
            str(source),
            "--existing-csv",
            str(existing),
            "--out-dir",
            str(out_dir),
        ]
    )

    assert code == 0
    safe = pd.read_csv(out_dir / "safe_contacts.csv", dtype=str, keep_default_na=False)
    conflicts = pd.read_csv(
        out_dir / "conflicts.csv", dtype=str, keep_default_na=False, quoting=csv.QUOTE_ALL
    )
    assert safe["full_name"].tolist() == ["Sari"]
    assert safe["canonical_phone"].tolist() == ["+6281399998888"]
    assert conflicts["existing_id"].tolist() == ["c1"]
    assert conflicts["fillable_fields"].tolist() == ["company"]
    assert "'conflicts': 1" in capsys.readouterr().out


def test_import_preview_reports_parse_errors(tmp_path, capsys):
    source = tmp_path / "import.csv"
    source.write_text("Name,Email\nJane,jane@example.com\n", encoding="utf-8")
    code = import_preview.main(["--input", str(source), "--out-dir", str(tmp_path)])
    assert code == 1
    assert "phone column" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main(["-q"])
