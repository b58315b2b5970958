"""
Machine tests — load order, assemble-and-load, reset, direct memory
editing, step fan-out, the periodic run loop and the deferred bus clear.

Run-loop tests use the smallest legal interval and bounded waits.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading
import time

import pytest
from accsim import run_source
from accsim.channel import Control
from accsim.config import PROFILES, ConfigError, load_config
from accsim.cpu import StepResult, StopReason
from accsim.machine import DeferredClear, Machine

SUM_SOURCE = "LOAD 10\nADD 11\nOUT\nSTORE 12\nHALT\nDATA 10 7\nDATA 11 3"
LOOP_SOURCE = "top: NOP\nJMP top"


@pytest.fixture
def machine():
    m = Machine(PROFILES["headless"])
    yield m
    m.close()


# ═══════════════════════════════════════════════
# Loading
# ═══════════════════════════════════════════════

class TestLoad:

    def test_data_written_after_program(self, machine):
        """A DATA preload on a program cell wins."""
        machine.load([1, 10, 255], {1: 20, 20: 4})
        assert machine.peek(1) == 20
        machine.run()
        assert machine.cpu.acc == 4

    def test_load_resets_registers(self, machine):
        machine.load([1, 10, 255], {10: 3})
        machine.run()
        machine.load([0, 255])
        assert machine.cpu.pc == 0
        assert machine.cpu.acc == 0
        assert not machine.cpu.halted

    def test_load_at_start_address(self, machine):
        machine.load([7, 255], start=30)
        assert machine.cpu.pc == 30
        assert machine.peek(31) == 255

    def test_load_address_from_config(self):
        with Machine(load_config(profile="headless", load_address=8)) as m:
            m.assemble_and_load("here: JMP here")
            assert m.cpu.pc == 8
            assert m.peek(9) == 8


class TestAssembleAndLoad:

    def test_sum_end_to_end(self, machine):
        result = machine.assemble_and_load(SUM_SOURCE)
        assert result.ok
        assert machine.run() is StopReason.HALT
        assert machine.cpu.acc == 10
        assert machine.peek(12) == 10
        assert machine.cpu.output == [10]
        assert machine.cpu.steps == 5

    def test_memory_cleared_before_load(self, machine):
        machine.poke(50, 9)
        machine.assemble_and_load(SUM_SOURCE)
        assert machine.peek(50) == 0

    def test_errors_leave_machine_untouched(self, machine):
        machine.assemble_and_load(SUM_SOURCE)
        machine.step()
        before = (machine.memory.snapshot(), machine.cpu.pc, machine.cpu.acc)
        result = machine.assemble_and_load("LOAD\nHALT")
        assert not result.ok
        assert result.errors[0].line_num == 1
        assert (machine.memory.snapshot(), machine.cpu.pc, machine.cpu.acc) == before

    def test_warnings_still_load(self, machine):
        result = machine.assemble_and_load("FOO\nHALT")
        assert result.ok
        assert len(result.warnings) == 1
        assert machine.peek(0) == 255

    def test_strict_blocks_on_warning(self, machine):
        result = machine.assemble_and_load("FOO\nHALT", strict=True)
        assert not result.ok
        assert machine.peek(0) == 0

    def test_events_recorded_newest_first(self, machine):
        machine.assemble_and_load(SUM_SOURCE)
        machine.step()
        actions = [a for _, a in machine.events]
        assert actions[:3] == ["LOAD 10", "ASSEMBLED", "PROGRAM LOADED"]


class TestResetAll:

    def test_reset_reloads_last_image(self, machine):
        machine.assemble_and_load(SUM_SOURCE)
        machine.run()
        machine.poke(40, 1)
        machine.reset_all()
        assert machine.cpu.pc == 0
        assert machine.cpu.acc == 0
        assert not machine.cpu.halted
        assert machine.peek(12) == 0
        assert machine.peek(40) == 0
        assert machine.peek(10) == 7
        assert machine.channel.state.idle
        assert machine.run() is StopReason.HALT
        assert machine.peek(12) == 10

    def test_reset_before_any_load(self, machine):
        machine.poke(3, 3)
        machine.reset_all()
        assert machine.memory.snapshot() == bytes(64)


class TestPeekPoke:

    def test_poke_seen_by_next_step(self, machine):
        machine.assemble_and_load(SUM_SOURCE)
        machine.poke(10, 100)
        machine.step()
        assert machine.cpu.acc == 100

    def test_poke_wraps(self, machine):
        machine.poke(65, 257)
        assert machine.peek(1) == 1


# ═══════════════════════════════════════════════
# Synchronous execution
# ═══════════════════════════════════════════════

class TestRun:

    def test_run_timeout(self, machine):
        machine.assemble_and_load(LOOP_SOURCE)
        assert machine.run(max_steps=10) is StopReason.TIMEOUT
        assert machine.cpu.steps == 10

    def test_run_uses_configured_budget(self):
        with Machine(load_config(profile="headless", max_steps=7)) as m:
            m.assemble_and_load(LOOP_SOURCE)
            assert m.run() is StopReason.TIMEOUT
            assert m.cpu.steps == 7

    def test_step_after_halt(self, machine):
        machine.assemble_and_load("HALT")
        assert isinstance(machine.step(), StepResult)
        assert machine.step() is StopReason.HALT

    def test_state(self, machine):
        machine.assemble_and_load(SUM_SOURCE)
        machine.step()
        state = machine.state()
        assert state['pc'] == 2
        assert state['acc'] == 7
        assert state['flags'] == {'zero': False}
        assert state['bus'] == {'address': None, 'data': None, 'control': None}

    def test_run_source(self):
        m = run_source(SUM_SOURCE)
        assert m.cpu.halted
        assert m.peek(12) == 10


class TestStepSubscriptions:

    def test_fan_out_in_order(self, machine):
        calls = []
        machine.subscribe_steps(lambda r: calls.append(('a', r.action)))
        machine.subscribe_steps(lambda r: calls.append(('b', r.action)))
        machine.assemble_and_load("NOP\nHALT")
        machine.run()
        assert calls == [('a', 'NOP'), ('b', 'NOP'), ('a', 'HALT'), ('b', 'HALT')]

    def test_cancel(self, machine):
        seen = []
        sub = machine.subscribe_steps(seen.append)
        machine.assemble_and_load("NOP\nNOP\nHALT")
        machine.step()
        sub.cancel()
        machine.step()
        assert len(seen) == 1


# ═══════════════════════════════════════════════
# Periodic run loop
# ═══════════════════════════════════════════════

class TestRunLoop:

    def test_runs_to_halt(self, machine):
        machine.assemble_and_load("NOP\nNOP\nHALT")
        assert machine.start(interval_ms=100)
        assert machine.running
        assert machine.wait(timeout=5)
        assert not machine.running
        assert machine.cpu.halted
        assert machine.cpu.steps == 3

    def test_start_when_halted(self, machine):
        machine.assemble_and_load("HALT")
        machine.run()
        assert machine.start() is False
        assert not machine.running

    def test_stop_cancels_pending_step(self, machine):
        machine.assemble_and_load(LOOP_SOURCE)
        machine.start(interval_ms=1500)
        machine.stop()
        assert not machine.running
        assert machine.wait(timeout=0)
        assert machine.cpu.steps == 0

    def test_observer_can_stop_loop(self, machine):
        machine.assemble_and_load(LOOP_SOURCE)

        def on_step(result):
            if machine.cpu.steps >= 3:
                machine.stop()

        machine.subscribe_steps(on_step)
        machine.start(interval_ms=100)
        assert machine.wait(timeout=5)
        assert machine.cpu.steps == 3
        assert not machine.cpu.halted

    def test_load_stops_loop(self, machine):
        machine.assemble_and_load(LOOP_SOURCE)
        machine.start(interval_ms=1500)
        machine.assemble_and_load(SUM_SOURCE)
        assert not machine.running

    def test_stale_tick_after_restart_does_nothing(self, machine):
        """A tick from before stop()/start() neither steps nor reschedules."""
        machine.assemble_and_load(LOOP_SOURCE)
        machine.start(interval_ms=1500)
        old_gen = machine._run_gen
        machine.stop()
        machine.start(interval_ms=1500)
        current = machine._timer
        machine._tick(old_gen)
        assert machine.cpu.steps == 0
        assert machine._timer is current

    def test_restart_while_tick_blocked_keeps_one_chain(self, machine):
        """Hold the lock past one interval, then pause and resume."""
        machine.assemble_and_load(LOOP_SOURCE)
        machine.start(interval_ms=100)
        with machine._lock:
            time.sleep(0.25)          # first timer fires and waits on the lock
            machine.stop()
            machine.start(interval_ms=100)
        time.sleep(1.05)
        machine.stop()
        # One chain at 100 ms/step gives about 10 steps here; two give about 20
        assert machine.cpu.steps <= 13

    @pytest.mark.parametrize("interval", [0, 99, 1501, -5, True, 2.5])
    def test_start_rejects_interval_out_of_range(self, machine, interval):
        machine.assemble_and_load(LOOP_SOURCE)
        with pytest.raises(ConfigError):
            machine.start(interval_ms=interval)
        assert not machine.running


# ═══════════════════════════════════════════════
# Deferred channel clear
# ═══════════════════════════════════════════════

class TestDeferredClear:

    def test_zero_delay_is_immediate(self):
        calls = []
        DeferredClear(0)(lambda: calls.append(1))
        assert calls == [1]

    def test_fires_after_delay(self):
        done = threading.Event()
        hook = DeferredClear(20)
        hook(done.set)
        assert hook.pending
        assert done.wait(timeout=5)

    def test_newer_request_replaces_pending(self):
        calls = []
        done = threading.Event()
        hook = DeferredClear(50)
        hook(lambda: calls.append('old'))
        hook(lambda: (calls.append('new'), done.set()))
        assert done.wait(timeout=5)
        assert calls == ['new']

    def test_cancel(self):
        calls = []
        hook = DeferredClear(1000)
        hook(lambda: calls.append(1))
        hook.cancel()
        assert not hook.pending
        assert calls == []

    def test_machine_channel_clears_later(self):
        done = threading.Event()
        cfg = load_config(profile="classroom", bus_clear_delay_ms=200)
        with Machine(cfg) as m:
            m.assemble_and_load("NOP\nHALT")
            m.channel.subscribe(lambda s: s.idle and done.set())
            m.step()
            assert m.channel.control == Control.FETCH
            assert done.wait(timeout=5)
            assert m.channel.state.idle

    def test_reset_cancels_pending_clear(self):
        cfg = load_config(profile="classroom", bus_clear_delay_ms=1000)
        with Machine(cfg) as m:
            m.assemble_and_load("NOP\nHALT")
            m.step()
            assert m.clear_hook.pending
            m.reset_all()
            assert not m.clear_hook.pending
            assert m.channel.state.idle

    def test_custom_clear_hook(self):
        pending = []
        with Machine(PROFILES["classroom"], clear_hook=pending.append) as m:
            m.assemble_and_load("NOP")
            m.step()
            assert m.channel.control == Control.FETCH
            pending.pop()()
            assert m.channel.state.idle
