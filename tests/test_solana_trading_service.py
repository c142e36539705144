import json

import pytest

from checkpoint_store import JsonlCheckpointStore, SignatureRecord
from config import USDC_MINT, Config
from conftest import URLS, FakeRPC, ProgramHistory, rpc_result, swap_tx, token_balance
from main import main
from solana_trading_service import ArtifactPaths, get_top_wallets

HISTORY = [("s1", 500), ("s2", 450), ("s3", 400), ("s4", 350), ("s6", 300), ("s7", 299)]
SIGNERS = {"s3": "A", "s4": "A", "s6": "B"}


def _config(tmp_path, **overrides):
    values = dict(
        rpc_urls=URLS,
        start_ts=300,
        end_ts=400,
        page_limit=3,
        page_delay_ms=0,
        per_tx_delay_ms=0,
        data_dir=str(tmp_path),
        run_name="t",
    )
    values.update(overrides)
    return Config(**values)


def _fake():
    history = ProgramHistory(HISTORY)

    def handler(url, body):
        if body["method"] == "getSignaturesForAddress":
            return rpc_result(history.page(body["params"][1]))
        signature = body["params"][0]
        signer = SIGNERS[signature]
        pre = [token_balance(0, signer, USDC_MINT, "1000000")]
        post = [token_balance(0, signer, USDC_MINT, "1500000" if signature == "s3" else "1000000")]
        return rpc_result(swap_tx(signer, pre=pre, post=post))

    return FakeRPC(handler)


def test_full_run_writes_every_artifact(tmp_path, clock):
    config = _config(tmp_path)
    fake = _fake()

    summary = get_top_wallets(config, client=fake.client(), clock=clock, sleep=lambda s: None)

    paths = ArtifactPaths.for_config(config)
    assert summary.completed
    assert [o["signature"] for o in JsonlCheckpointStore(paths.signatures[0]).load_all()] == ["s4", "s6"]
    assert [o["signature"] for o in JsonlCheckpointStore(paths.signatures[1]).load_all()] == ["s3"]
    assert [o["signature"] for o in JsonlCheckpointStore(paths.transactions[0]).load_all()] == ["s4", "s6"]
    assert [(row.wallet, row.swaps, row.est_pnl_usd) for row in summary.top] == [("A", 2, 0.5), ("B", 1, 0.0)]

    progress = json.loads(paths.progress.read_text(encoding="utf-8"))
    assert progress["A"] == {"swaps": 2, "pnl_base_units": 500000, "first_ts": 350, "last_ts": 400}
    assert paths.csv.read_text(encoding="utf-8").splitlines()[0] == "wallet,swaps,est_pnl_usd,first_ts,last_ts"
    assert json.loads(paths.json.read_text(encoding="utf-8"))["top"][0]["wallet"] == "A"


def test_second_run_does_not_double_count(tmp_path, clock):
    config = _config(tmp_path)

    get_top_wallets(config, client=_fake().client(), clock=clock, sleep=lambda s: None)
    fake = _fake()
    summary = get_top_wallets(config, client=fake.client(), clock=clock, sleep=lambda s: None)

    assert fake.calls("getTransaction") == []
    assert summary.top[0].swaps == 2


def test_zero_budget_does_no_rpc_work_and_keeps_checkpoints(tmp_path, clock):
    config = _config(tmp_path, max_minutes=0)
    paths = ArtifactPaths.for_config(config)
    JsonlCheckpointStore(paths.signatures[0]).append(SignatureRecord("s4", 350).to_dict())
    before = paths.signatures[0].read_bytes()
    fake = _fake()

    summary = get_top_wallets(config, client=fake.client(), clock=clock, sleep=lambda s: None)

    assert fake.requests == []
    assert not summary.completed
    assert paths.signatures[0].read_bytes() == before
    assert summary.top == []
    assert paths.csv.exists() and paths.json.exists()


def test_main_exits_nonzero_without_endpoints(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"rpc_urls": [], "start_iso": "2025-07-01T00:00:00Z", "end_iso": "2025-07-02T00:00:00Z"}),
        encoding="utf-8",
    )
    assert main(["--config", str(config_path)]) == 1


def test_main_report_only_rebuilds_from_progress(tmp_path, capsys):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "wallet_swaps_progress.json").write_text(
        json.dumps({"W": {"swaps": 3, "pnl_base_units": 2500000, "first_ts": 1, "last_ts": 9}}),
        encoding="utf-8",
    )
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({
            "rpc_urls": ["https://rpc-a.test"],
            "start_iso": "2025-07-01T00:00:00Z",
            "end_iso": "2025-07-02T00:00:00Z",
            "run_name": "july",
        }),
        encoding="utf-8",
    )

    assert main(["--config", str(config_path), "--data-dir", str(data_dir), "--report-only"]) == 0

    rows = (data_dir / "top_wallets_july.csv").read_text(encoding="utf-8").splitlines()
    assert rows[1] == "W,3,2.5,1,9"
    assert "top_wallets_july.json" in capsys.readouterr().out


def test_main_rejects_unknown_log_level(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(tmp_path / "config.json"), "--log-level", "LOUD"])
    assert excinfo.value.code == 2
