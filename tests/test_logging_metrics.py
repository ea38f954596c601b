import json
import logging
import time

from voice_orchestrator.logging import configure_logging
from voice_orchestrator.metrics import Gauge, Timer, tool_calls_total


def test_json_logging_structure(monkeypatch, capsys):
    monkeypatch.setenv("LOG_FORMAT", "json")
    configure_logging()
    logging.getLogger(__name__).info(
        "tool_invoked",
        extra={
            "call_id": "c1",
            "agent": "front_desk",
            "tool_name": "lookup",
            "latency_ms": 1.2,
            "error_category": "tool",
        },
    )
    captured = capsys.readouterr().err.strip().splitlines()[-1]
    data = json.loads(captured)
    assert data["message"] == "tool_invoked"
    assert data["event_type"] == "tool_invoked"
    for key in ["call_id", "agent", "tool_name", "latency_ms", "error_category"]:
        assert data[key] is not None


def test_counter_gauge_and_timer_update():
    before = tool_calls_total.value
    tool_calls_total.inc()
    assert tool_calls_total.value == before + 1

    gauge = Gauge()
    gauge.inc()
    gauge.inc()
    gauge.dec()
    assert gauge.value == 1

    timer = Timer()
    assert timer.stop() is None
    with timer.time():
        time.sleep(0.001)
    assert timer.last_ms is not None and timer.last_ms > 0
