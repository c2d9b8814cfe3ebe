"""Batched integration of many independent reactor cells.

A flow solver hands over the thermochemical state of every cell together
with its time step. The cells are split into fixed-size chunks and each
chunk is integrated by a worker. Cells share nothing but the read-only
mechanism, so the workers need no locks and the result of a cell does not
depend on the chunk it landed in.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass

import numpy as np

from simpkin.integrator import IntegrationStatus, IntegratorOptions, integrate
from simpkin.kinetics import Kinetics
from simpkin.models import Mechanism
from simpkin.reactors import REACTOR_TYPES, build_constant_pressure_rhs, build_constant_volume_rhs

logger = logging.getLogger(__name__)

EXECUTORS = ("process", "thread", "serial")


@dataclass(frozen=True)
class CellBatch:
    """States of ``N`` cells.

    Attributes:
        temperature: Cell temperatures (K), shape ``(N,)``.
        density: Cell densities (kg/m^3), shape ``(N,)``.
        mass_fractions: Species mass fractions, shape ``(N, K)``.
    """

    temperature: np.ndarray
    density: np.ndarray
    mass_fractions: np.ndarray

    def __post_init__(self) -> None:
        temperature = np.atleast_1d(np.asarray(self.temperature, dtype=float))
        density = np.atleast_1d(np.asarray(self.density, dtype=float))
        mass_fractions = np.atleast_2d(np.asarray(self.mass_fractions, dtype=float))
        if temperature.ndim != 1 or density.shape != temperature.shape:
            raise ValueError("temperature and density must be 1-D arrays of equal length")
        if mass_fractions.ndim != 2 or mass_fractions.shape[0] != temperature.shape[0]:
            raise ValueError(
                f"mass_fractions has shape {mass_fractions.shape}, "
                f"expected ({temperature.shape[0]}, n_species)"
            )
        object.__setattr__(self, "temperature", temperature)
        object.__setattr__(self, "density", density)
        object.__setattr__(self, "mass_fractions", mass_fractions)

    @property
    def size(self) -> int:
        return self.temperature.shape[0]


@dataclass
class BatchResult:
    """Per-cell outcome of :meth:`BatchScheduler.advance`, in input order.

    Attributes:
        temperature: Final temperatures (K).
        mass_fractions: Final mass fractions.
        species_source: ``rho * (Y_out - Y_in) / dt`` (kg/m^3/s); zero where dt is zero.
        production_rates: Molar production rates at the final state (mol/m^3/s).
        heat_release_rate: Heat release rate at the final state (W/m^3).
        converged: True where the cell reached its end time.
        status: :class:`IntegrationStatus` of every cell.
        n_steps: Accepted integrator steps per cell.
    """

    temperature: np.ndarray
    mass_fractions: np.ndarray
    species_source: np.ndarray
    production_rates: np.ndarray
    heat_release_rate: np.ndarray
    converged: np.ndarray
    status: np.ndarray
    n_steps: np.ndarray

    @property
    def failed_cells(self) -> np.ndarray:
        """Indices of the cells that did not converge."""
        return np.flatnonzero(~self.converged)

    @classmethod
    def unfinished(cls, cells: CellBatch) -> BatchResult:
        """A result holding the input states, every cell flagged ``TIMEOUT``."""
        n_cells, n_species = cells.mass_fractions.shape
        return cls(
            temperature=cells.temperature.copy(),
            mass_fractions=cells.mass_fractions.copy(),
            species_source=np.zeros((n_cells, n_species)),
            production_rates=np.zeros((n_cells, n_species)),
            heat_release_rate=np.zeros(n_cells),
            converged=np.zeros(n_cells, dtype=bool),
            status=np.full(n_cells, IntegrationStatus.TIMEOUT, dtype=object),
            n_steps=np.zeros(n_cells, dtype=int),
        )

    def store(self, start: int, chunk: BatchResult) -> None:
        stop = start + chunk.temperature.shape[0]
        for name in self.__dataclass_fields__:
            getattr(self, name)[start:stop] = getattr(chunk, name)


def _advance_chunk(
    mechanism: Mechanism,
    reactor: str,
    options: IntegratorOptions,
    cells: CellBatch,
    time_steps: np.ndarray,
    deadline: float | None,
) -> BatchResult:
    """Integrate every cell of a chunk. Runs inside a worker."""
    kinetics = Kinetics(mechanism)
    thermo = kinetics.thermo
    result = BatchResult.unfinished(cells)

    for i in range(cells.size):
        temperature = cells.temperature[i]
        density = cells.density[i]
        mass_fractions = cells.mass_fractions[i]
        dt = time_steps[i]

        with np.errstate(all="ignore"):
            if reactor == "constant_pressure":
                pressure = thermo.pressure(temperature, density, mass_fractions)
                rhs = build_constant_pressure_rhs(mechanism, pressure, kinetics=kinetics)
            else:
                rhs = build_constant_volume_rhs(mechanism, density, kinetics=kinetics)

        outcome = integrate(rhs, np.append(mass_fractions, temperature), dt, options, deadline=deadline)
        result.status[i] = outcome.status
        result.converged[i] = outcome.converged
        result.n_steps[i] = outcome.context.steps
        if outcome.status is IntegrationStatus.INVALID_STATE:
            continue

        final_mass_fractions = outcome.y[:-1]
        final_temperature = outcome.y[-1]
        if reactor == "constant_pressure":
            final_density = thermo.density(final_temperature, pressure, final_mass_fractions)
        else:
            final_density = density
        rates = kinetics.evaluate_at_density(final_temperature, final_density, final_mass_fractions)

        result.temperature[i] = final_temperature
        result.mass_fractions[i] = final_mass_fractions
        result.production_rates[i] = rates.net
        result.heat_release_rate[i] = rates.heat_release_rate
        if dt > 0.0:
            result.species_source[i] = density * (final_mass_fractions - mass_fractions) / dt

    return result


class BatchScheduler:
    """Advance many independent cells with the stiff integrator.

    Args:
        mechanism: Shared, read-only mechanism.
        reactor: ``"constant_pressure"`` or ``"constant_volume"``. For constant
            pressure the cell pressure follows from its density.
        batch_size: Cells per chunk handed to a worker.
        executor: ``"process"`` (a process pool), ``"thread"`` or ``"serial"``.
        max_workers: Pool size; ``None`` lets ``concurrent.futures`` decide.
        options: Integrator settings used for every cell.
        timeout_grace: Seconds to wait past a timeout for chunks to return
            their partial results.
    """

    def __init__(
        self,
        mechanism: Mechanism,
        *,
        reactor: str = "constant_pressure",
        batch_size: int = 256,
        executor: str = "process",
        max_workers: int | None = None,
        options: IntegratorOptions | None = None,
        timeout_grace: float = 1.0,
    ):
        if reactor not in REACTOR_TYPES:
            raise ValueError(f"Unknown reactor type: {reactor}. Expected one of {REACTOR_TYPES}")
        if executor not in EXECUTORS:
            raise ValueError(f"Unknown executor: {executor}. Expected one of {EXECUTORS}")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.mechanism = mechanism
        self.reactor = reactor
        self.batch_size = batch_size
        self.executor = executor
        self.max_workers = max_workers
        self.options = options or IntegratorOptions()
        self.timeout_grace = timeout_grace
        self._pool: concurrent.futures.Executor | None = None
        self._submitter: concurrent.futures.ThreadPoolExecutor | None = None

    def __enter__(self) -> BatchScheduler:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_pool(self) -> concurrent.futures.Executor:
        if self._pool is None:
            if self.executor == "process":
                self._pool = concurrent.futures.ProcessPoolExecutor(max_workers=self.max_workers)
            else:
                self._pool = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers)
        return self._pool

    def close(self) -> None:
        """Shut down the worker pools."""
        if self._submitter is not None:
            self._submitter.shutdown(wait=True)
            self._submitter = None
        if self._pool is not None:
            self._pool.shutdown(wait=True, cancel_futures=True)
            self._pool = None

    def _time_steps(self, cells: CellBatch, dt) -> np.ndarray:
        time_steps = np.asarray(dt, dtype=float)
        if time_steps.ndim == 0:
            time_steps = np.full(cells.size, float(time_steps))
        if time_steps.shape != (cells.size,):
            raise ValueError(f"dt has shape {time_steps.shape}, expected ({cells.size},)")
        if not np.all(np.isfinite(time_steps)) or np.any(time_steps < 0.0):
            raise ValueError("Time steps must be finite and non-negative")
        return time_steps

    def advance(self, cells: CellBatch, dt, *, timeout: float | None = None) -> BatchResult:
        """Integrate every cell over its time step.

        Args:
            cells: Cell states.
            dt: Time step (s), a scalar or one value per cell.
            timeout: Wall-clock budget (s) for the whole batch. Cells still
                running at the deadline keep their last accepted state and
                are flagged ``TIMEOUT``.

        Returns:
            Per-cell results in input order. Failed cells are flagged and
            never affect the other cells.
        """
        if cells.mass_fractions.shape[1] != self.mechanism.n_species:
            raise ValueError(
                f"Cells carry {cells.mass_fractions.shape[1]} species, "
                f"mechanism has {self.mechanism.n_species}"
            )
        time_steps = self._time_steps(cells, dt)
        started = time.monotonic()
        deadline = None if timeout is None else started + timeout
        result = BatchResult.unfinished(cells)

        chunks = []
        for start in range(0, cells.size, self.batch_size):
            stop = min(start + self.batch_size, cells.size)
            chunk = CellBatch(
                cells.temperature[start:stop],
                cells.density[start:stop],
                cells.mass_fractions[start:stop],
            )
            chunks.append((start, chunk, time_steps[start:stop]))

        if self.executor == "serial":
            for start, chunk, steps in chunks:
                result.store(
                    start,
                    _advance_chunk(self.mechanism, self.reactor, self.options, chunk, steps, deadline),
                )
        else:
            pool = self._get_pool()
            futures = {
                pool.submit(
                    _advance_chunk, self.mechanism, self.reactor, self.options, chunk, steps, deadline
                ): start
                for start, chunk, steps in chunks
            }
            wait_for = None if timeout is None else timeout + self.timeout_grace
            done, not_done = concurrent.futures.wait(futures, timeout=wait_for)
            for future in done:
                result.store(futures[future], future.result())
            for future in not_done:
                future.cancel()
            if not_done:
                logger.warning("%d chunk(s) did not return before the timeout", len(not_done))

        failed = result.failed_cells
        logger.info(
            "Advanced %d cells in %.3f s (%d chunks, %d failed)",
            cells.size,
            time.monotonic() - started,
            len(chunks),
            failed.size,
        )
        if failed.size:
            counts: dict[str, int] = {}
            for status in result.status[failed]:
                counts[status.value] = counts.get(status.value, 0) + 1
            logger.warning("%d of %d cells failed: %s", failed.size, cells.size, counts)
        return result

    def submit(
        self, cells: CellBatch, dt, *, timeout: float | None = None
    ) -> concurrent.futures.Future:
        """Start :meth:`advance` in the background and return its future."""
        if self._submitter is None:
            self._submitter = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        return self._submitter.submit(self.advance, cells, dt, timeout=timeout)
