"""Run-record and model-comparison plots."""

from .plots import plot_confusion_matrices, plot_run_record, plot_training_histories

__all__ = ["plot_confusion_matrices", "plot_run_record", "plot_training_histories"]
