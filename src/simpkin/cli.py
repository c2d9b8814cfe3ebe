"""Command-line entrypoints for SimpKin."""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict

import numpy as np
import typer

from simpkin.analysis import compute_ignition_delay, extinction_residence_time, ignition_delay
from simpkin.constants import ONE_ATM
from simpkin.errors import MechanismError
from simpkin.integrator import IntegratorOptions
from simpkin.loader import load_mechanism
from simpkin.models import Mechanism
from simpkin.reactors import (
    PSRConfiguration,
    ReactorState,
    build_psr_rhs,
    build_reactor_rhs,
    simulate,
)

app = typer.Typer(add_completion=False)

_REACTOR_TYPES = {"CONP": "constant_pressure", "CONV": "constant_volume", "PSR": "psr"}
_OPTION_FIELDS = {f.name for f in dataclasses.fields(IntegratorOptions)}


@app.callback()
def main(
    log_level: Annotated[
        str, typer.Option(help="Logging level (DEBUG, INFO, WARNING, ...).")
    ] = "WARNING",
) -> None:
    """Chemical kinetics for 0-D reactors."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(mechanism: str) -> Mechanism:
    try:
        return load_mechanism(mechanism)
    except MechanismError as exc:
        raise typer.BadParameter(str(exc), param_hint="mechanism") from exc


def _parse_state(mechanism: Mechanism, data: Dict[str, Any]) -> ReactorState:
    composition = data["composition"]
    mass_fractions = mechanism.mass_fractions(composition, basis=data.get("basis", "mole"))
    return ReactorState(
        temperature=float(data["T"]),
        mass_fractions=mass_fractions,
        pressure=float(data.get("P", ONE_ATM)),
    )


def _parse_solver(data: Dict[str, Any]) -> tuple[IntegratorOptions, float, int | None]:
    data = dict(data)
    end_time = float(data.pop("end_time", 0.01))
    points = data.pop("points", None)
    unknown = set(data) - _OPTION_FIELDS
    if unknown:
        raise ValueError(f"Unknown solver settings: {sorted(unknown)}")
    return IntegratorOptions(**data), end_time, (int(points) if points is not None else None)


def _emit(payload: Dict[str, Any], output: Path | None) -> None:
    json_output = json.dumps(payload, indent=2)
    typer.echo(json_output)
    if output:
        with open(output, "w") as f:
            f.write(json_output)


@app.command()
def run(
    config_file: Annotated[
        Path, typer.Argument(help="Path to JSON configuration file.")
    ],
    output: Annotated[
        Path | None, typer.Option(help="Path to save output JSON.")
    ] = None,
) -> None:
    """Run a reactor simulation from a config file."""
    with open(config_file, "r") as f:
        config = json.load(f)

    reactor_type = config.get("reactor_type", "CONP").upper()
    if reactor_type not in _REACTOR_TYPES:
        raise typer.BadParameter(
            f"Reactor type {reactor_type} not supported, use one of {sorted(_REACTOR_TYPES)}",
            param_hint="reactor_type",
        )
    mechanism = _load(config.get("mechanism", "h2o2"))

    try:
        options, end_time, points = _parse_solver(config.get("solver", {}))
        state = _parse_state(mechanism, config["initial"])
        if reactor_type == "PSR":
            r_conf = config["reactor_config"]
            inflow = _parse_state(mechanism, r_conf.get("inflow", config["initial"]))
            psr_config = PSRConfiguration(
                pressure=state.pressure,
                residence_time=float(r_conf["residence_time"]),
                inflow_temperature=inflow.temperature,
                inflow_mass_fractions=inflow.mass_fractions,
            )
            rhs = build_psr_rhs(mechanism, psr_config)
        else:
            rhs = build_reactor_rhs(mechanism, _REACTOR_TYPES[reactor_type], state)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc

    trace = simulate(rhs, state, end_time, options)

    time = trace.time
    temperature = trace.temperature
    mass_fractions = trace.mass_fractions
    if points:
        # resample the adaptive steps onto evenly spaced output times
        sample = np.linspace(time[0], time[-1], points)
        temperature = np.interp(sample, time, temperature)
        mass_fractions = np.column_stack(
            [np.interp(sample, time, mass_fractions[:, k]) for k in range(mechanism.n_species)]
        )
        time = sample

    data = {
        "reactor_type": reactor_type,
        "status": trace.status.value,
        "time": time.tolist(),
        "T": temperature.tolist(),
        "species": {},
    }
    for i, s in enumerate(mechanism.species_names):
        data["species"][s] = mass_fractions[:, i].tolist()
    if reactor_type != "PSR":
        data["ignition_delay"] = ignition_delay(trace.time, trace.temperature)

    _emit(data, output)


@app.command()
def ignition(
    temperature: Annotated[float, typer.Option(help="Initial temperature (K).")] = 1000.0,
    pressure: Annotated[float, typer.Option(help="Initial pressure (Pa).")] = ONE_ATM,
    composition: Annotated[
        str, typer.Option(help="Mixture, e.g. 'H2:2, O2:1, N2:3.76'.")
    ] = "H2:2, O2:1, N2:3.76",
    basis: Annotated[str, typer.Option(help="Composition basis: mole or mass.")] = "mole",
    mechanism: Annotated[
        str, typer.Option(help="Cantera YAML file, bundled name, or Cantera data file.")
    ] = "h2o2",
    reactor: Annotated[
        str, typer.Option(help="constant_volume or constant_pressure.")
    ] = "constant_volume",
    end_time: Annotated[float, typer.Option(help="Simulation duration (s).")] = 0.01,
    rise: Annotated[float, typer.Option(help="Temperature rise marking ignition (K).")] = 400.0,
    method: Annotated[
        str, typer.Option(help="temperature_rise or max_gradient.")
    ] = "temperature_rise",
    output: Annotated[
        Path | None, typer.Option(help="Path to save output JSON.")
    ] = None,
) -> None:
    """Compute the ignition delay of a mixture in a closed reactor."""
    mech = _load(mechanism)
    try:
        mass_fractions = mech.mass_fractions(composition, basis=basis)
        result = compute_ignition_delay(
            mech,
            temperature,
            pressure,
            mass_fractions,
            reactor=reactor,
            end_time=end_time,
            rise=rise,
            method=method,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    _emit(
        {
            "ignition_delay": result.delay,
            "status": result.trace.status.value,
            "final_temperature": float(result.trace.temperature[-1]),
            "steps": result.trace.context.steps,
        },
        output,
    )


@app.command()
def extinction(
    inflow_temperature: Annotated[float, typer.Option(help="Inflow temperature (K).")] = 300.0,
    pressure: Annotated[float, typer.Option(help="Reactor pressure (Pa).")] = ONE_ATM,
    composition: Annotated[
        str, typer.Option(help="Inflow mixture, e.g. 'H2:2, O2:1, N2:3.76'.")
    ] = "H2:2, O2:1, N2:3.76",
    basis: Annotated[str, typer.Option(help="Composition basis: mole or mass.")] = "mole",
    mechanism: Annotated[
        str, typer.Option(help="Cantera YAML file, bundled name, or Cantera data file.")
    ] = "h2o2",
    initial_residence_time: Annotated[
        float, typer.Option(help="Starting residence time (s).")
    ] = 1.0,
    tolerance: Annotated[
        float, typer.Option(help="Relative tolerance on the residence time.")
    ] = 0.05,
    output: Annotated[
        Path | None, typer.Option(help="Path to save output JSON.")
    ] = None,
) -> None:
    """Find the shortest residence time at which a PSR keeps burning."""
    mech = _load(mechanism)
    try:
        result = extinction_residence_time(
            mech,
            pressure,
            inflow_temperature,
            mech.mass_fractions(composition, basis=basis),
            initial_residence_time=initial_residence_time,
            relative_tolerance=tolerance,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    _emit(
        {
            "residence_time": result.residence_time,
            "lower_bound": result.lower_bound,
            "temperature": result.temperature,
            "history": [
                {"residence_time": tau, "T": temp, "burning": burning}
                for tau, temp, burning in result.history
            ],
        },
        output,
    )
