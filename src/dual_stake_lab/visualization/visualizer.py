"""Matplotlib-based chart helpers for DualStakeLab."""

from __future__ import annotations

import pandas as pd


class Visualizer:
    """Collection of static helpers that turn engine frames into charts."""

    @staticmethod
    def _plt():
        try:
            import matplotlib.pyplot as plt
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(
                "matplotlib is required for visualization. Install via pip."
            ) from exc
        return plt

    @staticmethod
    def _finish(plt, save_path: str | None, show: bool) -> None:
        plt.tight_layout()
        if save_path:
            plt.savefig(save_path, bbox_inches="tight")
        if show:
            plt.show()

    @staticmethod
    def line_ratio_history(
        history: pd.DataFrame,
        title: str = "CORE:BTC ratio vs. target",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        """Plot the ratio after each executed rebalance against the target."""
        if history.empty or "executed" not in history.columns:
            return
        executed = history[history["executed"]]
        if executed.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.plot(executed["timestamp"], executed["ratio_before"], label="before")
        plt.plot(executed["timestamp"], executed["ratio_after"], label="after")
        plt.plot(executed["timestamp"], executed["target_ratio"], label="target")
        plt.xlabel("Date")
        plt.ylabel("CORE per BTC")
        plt.title(title)
        plt.legend()
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def bar_validator_weights(
        df: pd.DataFrame,
        title: str = "Delegated CORE per validator",
        x_col: str = "address",
        y_col: str = "delegated_amount",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        if df.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.bar(df[x_col], df[y_col])
        plt.title(title)
        plt.ylabel("CORE")
        plt.xticks(rotation=45, ha="right")
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def scatter_validator_risk(
        df: pd.DataFrame,
        title: str = "Validator risk vs. APY",
        annotate: bool = True,
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        if df.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.scatter(df["risk_score"], df["effective_apy"] * 100.0)
        if annotate:
            for _, row in df.iterrows():
                plt.annotate(
                    str(row.get("address", "")),
                    (row["risk_score"], row["effective_apy"] * 100.0),
                    textcoords="offset points",
                    xytext=(5, 5),
                )
        plt.xlabel("Risk score")
        plt.ylabel("APY (%)")
        plt.title(title)
        Visualizer._finish(plt, save_path, show)


__all__ = ["Visualizer"]
