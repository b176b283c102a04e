"""Visualization utilities for Sparse ICP results."""

import matplotlib.pyplot as plt
import numpy as np


def plot_convergence(mean_distances, tolerance=None, title=None,
                     save_path='icp_convergence.png', show=True):
    """
    Plot Sparse ICP convergence curve.

    Args:
        mean_distances: Mean nearest neighbor distance per outer iteration
        tolerance: Optional early-stop distance drawn as a reference line
        title: Optional subtitle (e.g. the method and p used)
        save_path: Path to save the plot, or None to skip saving
        show: Open an interactive window

    Returns:
        The matplotlib Figure
    """
    fig, ax = plt.subplots(figsize=(12, 7))

    ax.plot(mean_distances, marker='o', linewidth=2, markersize=4,
            color='#2E86AB', label='Mean Distance')

    if tolerance is not None:
        ax.axhline(y=tolerance, color='red', linestyle='--', linewidth=1.5,
                   alpha=0.7, label=f'Tolerance ({tolerance})')

    ax.set_xlabel('Outer Iteration', fontsize=12)
    ax.set_ylabel('Mean Distance', fontsize=12)
    if len(mean_distances) > 0 and np.min(mean_distances) > 0:
        ax.set_yscale('log')

    full_title = 'Sparse ICP Convergence'
    if title:
        full_title += f"\n{title}"
    if len(mean_distances) > 0:
        full_title += f"\nInitial: {mean_distances[0]:.4f} → Final: {mean_distances[-1]:.4f}"

    ax.set_title(full_title, fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='best')

    plt.tight_layout()
    if save_path is not None:
        plt.savefig(save_path, dpi=150)
        print(f"Convergence plot saved to '{save_path}'")
    if show:
        plt.show()
    return fig
