"""
Solve driver using Hydra for configuration.

Usage:
    uv run python main.py
    uv run python main.py mesh=rectangle solver=cg problem.order=2
    uv run python main.py mesh=file mesh.path=meshes/domain.msh output=solution.vtu
    uv run python main.py mlflow.enabled=true
"""

import logging
from pathlib import Path

import hydra
import mlflow
from omegaconf import DictConfig, OmegaConf

from sparsefem import Mesh, ProblemParameters, Problem, SolverParameters, line_mesh, rectangle_mesh
from sparsefem.export import write_solution

log = logging.getLogger(__name__)


def create_mesh(cfg: DictConfig) -> Mesh:
    if cfg.mesh.type == "line":
        return line_mesh(cfg.mesh.a, cfg.mesh.b, cfg.mesh.n_elem)
    elif cfg.mesh.type == "rectangle":
        return rectangle_mesh(
            cfg.mesh.x0, cfg.mesh.y0,
            cfg.mesh.L1, cfg.mesh.L2,
            cfg.mesh.noelms1, cfg.mesh.noelms2,
        )
    elif cfg.mesh.type == "file":
        return Mesh.from_meshio(hydra.utils.to_absolute_path(cfg.mesh.path))
    else:
        raise ValueError(f"Unknown mesh type: {cfg.mesh.type}")


def create_params(cfg: DictConfig) -> ProblemParameters:
    solver = SolverParameters(**OmegaConf.to_container(cfg.solver))
    return ProblemParameters(solver=solver, **OmegaConf.to_container(cfg.problem))


def by_group(table, name: str, default=None):
    """Turn a {group: value} config table into a group -> value callback."""
    values = {int(k): v for k, v in (OmegaConf.to_container(table) if table else {}).items()}

    def lookup(group: int):
        if group in values:
            return values[group]
        if default is None:
            raise KeyError(f"No {name} configured for physical group {group}")
        return default

    return lookup


def group_table(table) -> dict:
    return {int(k): v for k, v in (OmegaConf.to_container(table) if table else {}).items()}


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg: DictConfig):
    log.info(f"Config:\n{OmegaConf.to_yaml(cfg)}")

    mesh = create_mesh(cfg)
    params = create_params(cfg)
    log.info(f"Mesh: {mesh.n_nodes} nodes, {mesh.n_elem} {mesh.shape.value} elements")

    material = by_group(cfg.materials, "material")
    source = by_group(cfg.sources, "source", default=0.0)
    reaction = by_group(cfg.reaction, "reaction", default=0.0) if cfg.reaction else None

    problem = Problem(mesh, params)
    result = problem.solve(
        material,
        source,
        dirichlet=group_table(cfg.dirichlet),
        neumann=group_table(cfg.neumann),
        priority=group_table(cfg.priority) or None,
        reaction=reaction,
    )
    flux = result.field(material).to_array()
    log.info(f"u in [{result.u.min():.6g}, {result.u.max():.6g}], max |flux| = {abs(flux).max():.6g}")

    if cfg.output:
        write_solution(Path(cfg.output), result.dof_map, result.solution, {"flux": flux})

    if cfg.mlflow.enabled:
        mlflow.set_tracking_uri(cfg.mlflow.tracking_uri)
        mlflow.set_experiment(cfg.mlflow.experiment_name)
        with mlflow.start_run(run_name=f"{cfg.mesh.type}_P{params.order}_{params.solver.method}"):
            mlflow.log_params(params.to_mlflow())
            mlflow.log_metrics(result.solution.metrics.to_mlflow())
            mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")
            if cfg.output:
                mlflow.log_artifact(str(cfg.output))


if __name__ == "__main__":
    main()
