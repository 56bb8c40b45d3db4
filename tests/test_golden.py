from __future__ import annotations

import json
from pathlib import Path

import pytest

from celldemag.golden import load
from celldemag.main import main
from celldemag.testcases import default_cases
from celldemag.verify_golden import check_against_golden, generate_golden

COMMITTED_GOLDEN = Path(__file__).resolve().parent / "golden" / "dipole_fields.json"


def test_golden_roundtrip_all_cases_ok(tmp_path):
    path = generate_golden(out_path=str(tmp_path / "g.json"))
    series = load(path)
    assert [s.case for s in series] == [c.name for c in default_cases()]
    res = check_against_golden(golden_path=path, tol=0.0)
    assert res
    assert all(r.ok for r in res)
    assert all(r.max_dH_total == 0.0 and r.max_dH_demag == 0.0 for r in res)


def test_golden_isolated_cell_is_self_term_only(tmp_path):
    cases = [c for c in default_cases() if c.name == "isolated_cell"]
    path = generate_golden(out_path=str(tmp_path / "iso.json"), cases=cases)
    (s,) = load(path)
    assert s.cell_ids == [0]
    assert s.total[0][0] == 0.0 and s.total[0][1] == 0.0
    assert s.demag_only[0][2] == pytest.approx(-0.5 * s.total[0][2], rel=1e-15)


def test_golden_detects_perturbation(tmp_path):
    path = tmp_path / "g.json"
    generate_golden(out_path=str(path))
    d = json.loads(path.read_text(encoding="utf-8"))
    d["series"][1]["total"][0][2] *= 1.001
    path.write_text(json.dumps(d), encoding="utf-8")
    res = {r.case: r for r in check_against_golden(golden_path=str(path), tol=1e-9)}
    assert not res["uniform_cube"].ok
    assert res["isolated_cell"].ok


def test_cli_golden_gen_and_check(tmp_path, capsys):
    path = str(tmp_path / "golden.json")
    with pytest.raises(SystemExit) as exc:
        main(["golden-gen", "--out", path, "--case", "uniform_cube"])
    assert exc.value.code == 0
    with pytest.raises(SystemExit) as exc:
        main(["golden-check", "--golden", path, "--block-size", "5"])
    assert exc.value.code == 0
    assert "[golden-check uniform_cube] ok=True" in capsys.readouterr().out


def test_cli_golden_gen_unknown_case(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["golden-gen", "--out", str(tmp_path / "x.json"), "--case", "nope"])
    assert "Unknown cases" in str(exc.value.code)


def test_cli_golden_check_writes_plots(tmp_path, capsys):
    path = str(tmp_path / "golden.json")
    generate_golden(out_path=path, cases=[c for c in default_cases() if c.name == "partitioned_lattice"])
    plots = tmp_path / "plots"
    with pytest.raises(SystemExit) as exc:
        main(["golden-check", "--golden", path, "--plots", str(plots)])
    assert exc.value.code == 0
    assert (plots / "partitioned_lattice.png").exists()
    assert "plots ->" in capsys.readouterr().out


def test_committed_golden_matches_exactly():
    series = load(str(COMMITTED_GOLDEN))
    assert [s.case for s in series] == [c.name for c in default_cases()]
    res = check_against_golden(golden_path=str(COMMITTED_GOLDEN), tol=0.0)
    assert [r.case for r in res] == [c.name for c in default_cases()]
    for r in res:
        assert r.ok, (r.case, r.max_dH_total, r.max_dH_demag, r.details)


@pytest.mark.parametrize("block_size", [1, 7])
def test_committed_golden_independent_of_block_size(block_size):
    res = check_against_golden(golden_path=str(COMMITTED_GOLDEN), tol=0.0, block_size=block_size)
    assert res and all(r.ok for r in res)


def test_cli_golden_check_against_committed_file(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["golden-check", "--golden", str(COMMITTED_GOLDEN), "--tol", "0"])
    assert exc.value.code == 0
    out = capsys.readouterr().out
    for c in default_cases():
        assert f"[golden-check {c.name}] ok=True" in out


def test_cli_golden_check_missing_file(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["golden-check", "--golden", str(tmp_path / "absent.json")])
    assert "cannot read golden file" in str(exc.value.code)


@pytest.mark.parametrize("text", ["{not json", '{"series": [{"case": "uniform_cube"}]}'])
def test_cli_golden_check_malformed_file(tmp_path, text):
    path = tmp_path / "bad.json"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main(["golden-check", "--golden", str(path)])
    assert "cannot read golden file" in str(exc.value.code)
