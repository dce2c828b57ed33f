"""
Point Cloud Visualization Tools

This module provides a viewer that follows the swarm's best pose while the
registration runs. It is advisory only: the registration engine never
imports it and behaves identically without it.
"""

from typing import Dict, Optional, Tuple, Union

import numpy as np
import plotly.graph_objects as go
import pyvista as pv

from ..registration.transform import RigidTransform


class PointCloudVisualizer:
    """A class for visualizing registration progress using different backends."""

    def __init__(self, backend: str = 'pyvista', sample_size: Optional[int] = None, title: str = "PSO Viewer"):
        """
        Args:
            backend: 'pyvista' (interactive, updated every frame) or 'plotly' (static, shown at the end)
            sample_size: Optional number of points per cloud to display
            title: Window / figure title
        """
        if backend not in ['pyvista', 'plotly']:
            raise ValueError(
                f"Unsupported backend: '{backend}'. Choose 'pyvista' or 'plotly'."
            )
        self.backend = backend
        self.sample_size = sample_size
        self.title = title
        self._clouds: Dict[str, Tuple[np.ndarray, str]] = {}
        self._poses: Dict[str, np.ndarray] = {}
        self._actors: Dict[str, object] = {}
        self._plotter = None
        self._shown = False

    # ----------------- Public API -----------------
    def add_cloud(self, name: str, points: np.ndarray, color: str = 'blue') -> None:
        if self.sample_size:
            points = self._downsample(points, self.sample_size)
        self._clouds[name] = (points, color)
        self._poses[name] = np.eye(4)
        if self.backend == 'pyvista':
            plotter = self._get_plotter()
            self._actors[name] = plotter.add_mesh(
                pv.PolyData(points),
                color=color,
                label=name,
                render_points_as_spheres=False,
                point_size=3,
                lighting=False,
            )

    def update_pose(self, name: str, transform: Union[RigidTransform, np.ndarray]) -> None:
        """Set the pose of a previously added cloud."""
        if name not in self._clouds:
            raise KeyError(f"Unknown cloud '{name}'")
        matrix = transform.as_matrix() if isinstance(transform, RigidTransform) else np.asarray(transform)
        self._poses[name] = matrix
        actor = self._actors.get(name)
        if actor is not None:
            actor.user_matrix = matrix

    def render_frame(self, timeout_ms: int = 1) -> None:
        """Process one frame of the interactive window; no-op for the static backend."""
        if self.backend != 'pyvista':
            return
        plotter = self._get_plotter()
        if not self._shown:
            plotter.add_legend()
            plotter.show(title=self.title, interactive_update=True, auto_close=False)
            self._shown = True
        plotter.update(stime=timeout_ms)

    def show(self) -> None:
        """Draw the final scene (blocking for pyvista, browser figure for plotly)."""
        if self.backend == 'plotly':
            self._visualize_plotly()
            return
        plotter = self._get_plotter()
        if self._shown:
            plotter.show()
        else:
            plotter.add_legend()
            plotter.show(title=self.title)
            self._shown = True

    def close(self) -> None:
        if self._plotter is not None:
            self._plotter.close()
            self._plotter = None
            self._actors.clear()
            self._shown = False

    # ----------------- Internal helpers -----------------
    def _downsample(self, point_cloud: np.ndarray, sample_size: int) -> np.ndarray:
        if sample_size >= len(point_cloud):
            return point_cloud
        indices = np.random.default_rng(0).choice(len(point_cloud), sample_size, replace=False)
        return point_cloud[indices]

    def _get_plotter(self):
        if self._plotter is None:
            self._plotter = pv.Plotter(title=self.title)
            self._plotter.set_background('white')
        return self._plotter

    def _visualize_plotly(self):
        fig = go.Figure()
        for name, (pc, color) in self._clouds.items():
            T = self._poses[name]
            moved = pc @ T[:3, :3].T + T[:3, 3]
            fig.add_trace(go.Scatter3d(
                x=moved[:, 0], y=moved[:, 1], z=moved[:, 2],
                mode='markers',
                marker=dict(size=1, color=color),
                name=name,
            ))
        fig.update_layout(
            title=self.title,
            scene=dict(
                xaxis=dict(visible=False), yaxis=dict(visible=False), zaxis=dict(visible=False), aspectmode='data'
            ),
        )
        fig.show(renderer="browser")
