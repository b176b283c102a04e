"""Point cloud loading, saving and conversion to Open3D."""

import numpy as np
import open3d as o3d


class PointCloud:
    """Points (N, 3) with optional per-point normals and colors."""

    def __init__(self, points, normals=None, colors=None):
        """
        Args:
            points: (N, 3) array
            normals: Optional (N, 3) array
            colors: Optional (N, 3) array of RGB values in [0, 1]
        """
        self.points = np.asarray(points, dtype=np.float64)
        self.normals = None if normals is None else np.asarray(normals, dtype=np.float64)
        self.colors = None if colors is None else np.asarray(colors, dtype=np.float64)

        for name, values in (("normals", self.normals), ("colors", self.colors)):
            if values is not None and values.shape != self.points.shape:
                raise ValueError(f"{name} shape {values.shape} does not match "
                                 f"points shape {self.points.shape}")

    @classmethod
    def from_o3d(cls, o3d_pcd):
        """Initialize from an Open3D PointCloud object."""
        normals = np.asarray(o3d_pcd.normals) if o3d_pcd.has_normals() else None
        colors = np.asarray(o3d_pcd.colors) if o3d_pcd.has_colors() else None
        return cls(np.asarray(o3d_pcd.points), normals=normals, colors=colors)

    @classmethod
    def from_file(cls, filepath):
        """Load point cloud from file (any format Open3D reads: .ply, .pcd, .xyz, ...)."""
        pcd = o3d.io.read_point_cloud(filepath)
        if pcd.is_empty():
            raise ValueError(f"No points could be read from {filepath}")
        return cls.from_o3d(pcd)

    def to_o3d(self, points=None, color=None):
        """
        Convert to Open3D PointCloud object.

        Args:
            points: Optional custom points array (default: self.points)
            color: Optional uniform color [r, g, b] or color array

        Returns:
            Open3D PointCloud object
        """
        pcd = o3d.geometry.PointCloud()
        pts = points if points is not None else self.points
        pcd.points = o3d.utility.Vector3dVector(pts)

        if self.normals is not None and points is None:
            pcd.normals = o3d.utility.Vector3dVector(self.normals)

        if color is not None:
            if isinstance(color, (list, tuple)) and len(color) == 3:
                pcd.paint_uniform_color(color)
            else:
                pcd.colors = o3d.utility.Vector3dVector(color)
        elif self.colors is not None:
            pcd.colors = o3d.utility.Vector3dVector(self.colors)

        return pcd

    def save(self, filepath):
        """Write the cloud (with normals and colors when present) to file."""
        if not o3d.io.write_point_cloud(filepath, self.to_o3d()):
            raise IOError(f"Could not write point cloud to {filepath}")

    def transformed(self, transform):
        """New cloud moved by a RigidTransform; normals are rotated, colors kept."""
        normals = None if self.normals is None else transform.rotate(self.normals)
        return PointCloud(transform.apply(self.points), normals=normals, colors=self.colors)

    def __len__(self):
        return len(self.points)
