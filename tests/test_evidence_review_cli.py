from __future__ import annotations

from core.utils import read_json, write_json
from evidence_review import main


def test_cli_offline_rereview_and_answer(tmp_path, sample_papers, capsys):
    store_path = tmp_path / "papers.json"
    out_path = tmp_path / "out" / "results.json"
    write_json(store_path, {"papers": [p.to_dict() for p in sample_papers]})

    code = main(
        [
            "--store",
            str(store_path),
            "--offline",
            "--rereview",
            "--question",
            "Are cytokines elevated after exercise?",
            "--output",
            str(out_path),
        ]
    )
    assert code == 0
    assert "Re-reviewed 3 paper(s); 0 failed." in capsys.readouterr().out

    results = read_json(out_path)
    assert results["rereview"]["tagged"] == 2
    [answer] = results["answers"]
    assert answer["status"] == "unanswered"
    assert answer["paper_count"] == 1

    stored = {p["id"]: p for p in read_json(store_path)["papers"]}
    assert stored["p1"]["sections"]["results"].startswith("Cytotoxicity was reduced")
    assert stored["p2"]["tags"]


def test_cli_requires_work(tmp_path):
    assert main(["--store", str(tmp_path / "missing.json")]) == 2
    assert main(["--store", str(tmp_path / "missing.json"), "--rereview"]) == 1
