"""
accsim — Machine: Memory + Channel + ProcessingUnit and the driver around them

The Machine owns one Memory and one Channel and binds a ProcessingUnit to
them. It is the surface a presentation layer talks to:

  load / assemble_and_load   put a program and its data preload in memory
  step / run                 synchronous execution
  start / stop               periodic run loop (one timer, one step in flight)
  reset_all                  clear memory, reload the last program
  peek / poke                direct cell editing between steps
  subscribe_steps            step snapshots for any number of observers

Threading model:
  Exactly one step runs at a time. The periodic loop is a chain of
  threading.Timer objects with at most one pending; every mutation path
  calls stop() first, which cancels the pending timer, and then takes the
  machine lock so a step that already started finishes before the
  mutation runs. The deferred channel clear is cosmetic and may be skipped
  when a newer clear or a reset supersedes it.
"""

import contextlib
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .assembler import Assembler, AssemblyResult
from .channel import Channel, Subscription
from .config import MAX_STEP_INTERVAL_MS, MIN_STEP_INTERVAL_MS, ConfigError, MachineConfig
from .cpu import ProcessingUnit, StepObserver, StepResult, StopReason
from .memory import Memory

log = logging.getLogger(__name__)

EVENT_HISTORY = 200


class DeferredClear:
    """Clear hook that runs the channel clear after a delay.

    A newer request replaces a pending one; cancel() drops it. A delay of 0
    clears immediately. If guard is given, a delayed clear runs while
    holding it (lock order: guard, then the internal lock).
    """

    def __init__(self, delay_ms: int, guard=None):
        self.delay = max(0, delay_ms) / 1000.0
        self.guard = guard if guard is not None else contextlib.nullcontext()
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    def __call__(self, callback: Callable[[], None]):
        with self._lock:
            self._cancel_locked()
            if self.delay <= 0:
                fire_now = True
            else:
                fire_now = False
                gen = self._generation
                self._timer = threading.Timer(self.delay, self._fire, args=(gen, callback))
                self._timer.daemon = True
                self._timer.start()
        if fire_now:
            callback()

    def _fire(self, gen: int, callback: Callable[[], None]):
        with self.guard:
            with self._lock:
                if gen != self._generation:
                    return
                self._timer = None
                self._generation += 1
            callback()

    def _cancel_locked(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel(self):
        with self._lock:
            self._cancel_locked()

    @property
    def pending(self) -> bool:
        return self._timer is not None


class Machine:
    """A complete simulated computer with its driver.

    Usage:
        m = Machine()
        m.assemble_and_load("LOAD 10\\nADD 11\\nOUT\\nSTORE 12\\nHALT\\nDATA 10 7\\nDATA 11 3")
        m.run()          # StopReason.HALT
        m.peek(12)       # 10
    """

    def __init__(self, config: Optional[MachineConfig] = None,
                 clear_hook: Optional[Callable] = None):
        self.config = config or MachineConfig()
        self.memory = Memory(self.config.memory_size)
        self.channel = Channel()
        self._lock = threading.RLock()

        if clear_hook is None and self.config.bus_clear_delay_ms > 0:
            clear_hook = DeferredClear(self.config.bus_clear_delay_ms, guard=self._lock)
        self.clear_hook = clear_hook

        self.cpu = ProcessingUnit(self.memory, self.channel,
                                  on_step=self._publish_step,
                                  clear_hook=clear_hook)
        self.cpu.enable_trace(self.config.trace)

        # Last loaded image, replayed by reset_all()
        self._program: List[int] = []
        self._data: Dict[int, int] = {}
        self._start = self.config.load_address

        self._step_subs: List[Subscription] = []
        self.events: Deque[Tuple[float, str]] = deque(maxlen=EVENT_HISTORY)

        # Run loop state
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._run_gen = 0             # Bumped by start()/stop(); stale ticks drop out
        self._idle = threading.Event()
        self._idle.set()
        self.interval_ms = self.config.step_interval_ms

    # ══════════════════════════════════════════════
    # Step observers
    # ══════════════════════════════════════════════

    def subscribe_steps(self, observer: StepObserver) -> Subscription:
        sub = Subscription(self, observer)
        self._step_subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        sub.active = False
        if sub in self._step_subs:
            self._step_subs.remove(sub)

    def _publish_step(self, result: StepResult):
        self._event(result.action)
        for sub in list(self._step_subs):
            if sub.active:
                sub.observer(result)

    def _event(self, action: str):
        self.events.appendleft((time.time(), action))

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load(self, program: Sequence[int], data: Optional[Mapping[int, int]] = None,
             start: Optional[int] = None):
        """Load program bytes, then the data preload over them.

        Data wins where both touch the same cell. Registers are reset and
        PC points at start.
        """
        self.stop()
        if start is None:
            start = self.config.load_address
        with self._lock:
            self._program = list(program)
            self._data = dict(data or {})
            self._start = start
            self.cpu.reset()
            self.cpu.load_program(self._program, start)
            self.memory.load_data(self._data)
            self._event("PROGRAM LOADED")
        log.info("Loaded %d program bytes at %d, %d data cells",
                 len(self._program), start, len(self._data))

    def assemble_and_load(self, source: Union[str, Sequence[str]],
                          start: Optional[int] = None,
                          strict: bool = False) -> AssemblyResult:
        """Assemble source and, if it has no errors, load it into cleared memory.

        On errors nothing in the machine changes (apart from the run loop
        being stopped) and the result carries the diagnostics.
        """
        self.stop()
        if start is None:
            start = self.config.load_address
        result = Assembler(origin=start, strict=strict).assemble(source)
        if not result.ok:
            for diag in result.errors:
                log.error("%s", diag)
            return result

        with self._lock:
            self._cancel_clear()
            self.memory.fill(0)
            self.load(result.program, result.data, start)
            self._event("ASSEMBLED")
        return result

    def reset_all(self):
        """Stop, zero memory and registers, reload the last image, clear the bus."""
        self.stop()
        with self._lock:
            self._cancel_clear()
            self.cpu.reset()
            self.memory.fill(0)
            self.cpu.load_program(self._program, self._start)
            self.memory.load_data(self._data)
            self.channel.clear()
            self._event("RESET")
        log.info("Machine reset")

    # ══════════════════════════════════════════════
    # Direct memory access
    # ══════════════════════════════════════════════

    def peek(self, addr: int) -> int:
        return self.memory.read(addr)

    def poke(self, addr: int, value: int):
        """Edit one cell; takes effect at the next step."""
        with self._lock:
            self.memory.write(addr, value)
        log.debug("Poke M[%d] <- %d", self.memory.wrap(addr), value % 256)

    # ══════════════════════════════════════════════
    # Synchronous execution
    # ══════════════════════════════════════════════

    def step(self) -> Union[StepResult, StopReason]:
        with self._lock:
            return self.cpu.step()

    def run(self, max_steps: Optional[int] = None) -> StopReason:
        if max_steps is None:
            max_steps = self.config.max_steps
        with self._lock:
            reason = self.cpu.run(max_steps)
        if reason is StopReason.TIMEOUT:
            log.warning("Step budget of %d exhausted before HALT", max_steps)
        return reason

    # ══════════════════════════════════════════════
    # Periodic run loop
    # ══════════════════════════════════════════════

    @property
    def running(self) -> bool:
        return self._running

    def start(self, interval_ms: Optional[int] = None) -> bool:
        """Begin stepping every interval_ms. Returns False if already halted.

        Raises ConfigError if interval_ms is outside the speed control range.
        """
        if interval_ms is not None and (
                isinstance(interval_ms, bool) or not isinstance(interval_ms, int)
                or not MIN_STEP_INTERVAL_MS <= interval_ms <= MAX_STEP_INTERVAL_MS):
            raise ConfigError(
                f"interval_ms must be {MIN_STEP_INTERVAL_MS}-{MAX_STEP_INTERVAL_MS}, "
                f"got {interval_ms!r}")
        with self._lock:
            if self._running:
                return True
            if self.cpu.halted:
                log.info("Run requested but processing unit is halted")
                return False
            if interval_ms is not None:
                self.interval_ms = interval_ms
            self._running = True
            self._run_gen += 1
            self._idle.clear()
            self._schedule()
        log.info("Run loop started (%d ms/step)", self.interval_ms)
        return True

    def stop(self):
        """Cancel the run loop. No scheduled step survives this call.

        A timer that already fired and is waiting on the machine lock
        belongs to an old generation and returns without stepping.
        """
        with self._lock:
            was_running = self._running
            self._running = False
            self._run_gen += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._idle.set()
        if was_running:
            log.info("Run loop stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run loop stops. Returns False on timeout."""
        return self._idle.wait(timeout)

    def _schedule(self):
        self._timer = threading.Timer(self.interval_ms / 1000.0, self._tick,
                                      args=(self._run_gen,))
        self._timer.daemon = True
        self._timer.start()

    def _tick(self, gen: int):
        with self._lock:
            if gen != self._run_gen or not self._running:
                return
            self._timer = None
            self.cpu.step()
            # An observer may have called stop() (or stop() and start()) during the step
            if gen != self._run_gen or not self._running:
                return
            if self.cpu.halted:
                self._running = False
                self._idle.set()
                log.info("Run loop finished: HALT")
                return
            self._schedule()

    # ══════════════════════════════════════════════
    # Inspection / teardown
    # ══════════════════════════════════════════════

    def state(self) -> Dict[str, object]:
        """Registers, flags and bus lines in observer-friendly form."""
        with self._lock:
            return {
                'pc': self.cpu.pc,
                'acc': self.cpu.acc,
                'ir': self.cpu.ir,
                'flags': self.cpu.flags,
                'halted': self.cpu.halted,
                'steps': self.cpu.steps,
                'bus': self.channel.state.as_dict(),
            }

    def _cancel_clear(self):
        if isinstance(self.clear_hook, DeferredClear):
            self.clear_hook.cancel()

    def close(self):
        self.stop()
        self._cancel_clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
