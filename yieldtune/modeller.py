import os
import pickle
import dataclasses
import warnings
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from yieldtune.config import ModelConfig
from yieldtune.dataset import load_observations, coerce_schema
from yieldtune.evaluator import EvaluationResult, FinalFitEvaluator
from yieldtune.explainer import Attribution, Explainer
from yieldtune.models import ModelFamily, ParamRange, get_family
from yieldtune.paths import ARTIFACTS_FILE, FIGURES_DIR, OUTPUT_PATH, REPORT_FILE, ensure_output_dirs
from yieldtune.recipe import FeatureRecipe
from yieldtune.selector import CandidateSelector, SelectionResult
from yieldtune.splitter import DataSplit, stratified_split
from yieldtune.tuner import Tuner, TuningResults

# === Plot styling ===
plt.style.use('seaborn-v0_8')
sns.set_palette("husl")


class YieldModeler:
    """
    One yield-model run: load → split → recipe → tune → select → final fit → explain.
    Each step stores its outputs in ``self.artifacts`` for the report.
    """

    def __init__(self, config: ModelConfig = None, output_path: str = OUTPUT_PATH):
        self.config = config or ModelConfig()
        self.output_path = output_path
        self.figures_path = f"{output_path}/{FIGURES_DIR}"
        self.family: ModelFamily = get_family(self.config.model_name, self.config.model_params)
        self.artifacts: Dict[str, Any] = {}
        self.split: Optional[DataSplit] = None
        self.recipe: Optional[FeatureRecipe] = None
        self.tuning: Optional[TuningResults] = None
        self.selection: Optional[SelectionResult] = None
        self.evaluation: Optional[EvaluationResult] = None
        self.attribution: Optional[Attribution] = None

    def _log(self, msg: str):
        if self.config.verbose:
            print(msg)

    def _savefig(self, name: str):
        ensure_output_dirs(self.output_path)
        plt.tight_layout()
        plt.savefig(f"{self.figures_path}/{name}", bbox_inches="tight")
        plt.close()

    # --------------------------
    # Step 1: Load / Validate
    # --------------------------
    def load_and_validate_data(self, filepath: str = None, df: pd.DataFrame = None) -> pd.DataFrame:
        self._log("🔄 Step 1: Loading and validating data...")
        if df is not None:
            df = coerce_schema(df, self.config).dropna(subset=[self.config.target_col]).reset_index(drop=True)
        else:
            df = load_observations(filepath, self.config, verbose=self.config.verbose)

        target = df[self.config.target_col]
        self.artifacts['raw_data_shape'] = df.shape
        self.artifacts['target_stats'] = {
            'mean': float(target.mean()),
            'std': float(target.std()),
            'min': float(target.min()),
            'max': float(target.max()),
            'skewness': float(target.skew()),
        }
        self.artifacts['levels'] = {c: int(df[c].nunique()) for c in self.config.cat_cols}
        self._log(f"✅ {df.shape[0]} observations, target '{self.config.target_col}' "
                  f"mean={target.mean():.2f} sd={target.std():.2f}")

        if self.config.save_plots:
            plt.figure(figsize=(8, 6))
            plt.hist(target, bins=30, alpha=0.7, density=True)
            target.plot.kde(linewidth=2)
            plt.title("Target Distribution")
            plt.xlabel(self.config.target_col)
            self._savefig("01a_target_distribution.svg")

            first_cat = self.config.cat_cols[0] if self.config.cat_cols else None
            if first_cat:
                plt.figure(figsize=(10, 6))
                sns.boxplot(data=df, x=first_cat, y=self.config.target_col, width=0.6, fliersize=2.5, linewidth=1.6)
                plt.title(f"Yield by {first_cat}")
                plt.xticks(rotation=30)
                plt.grid(True, axis="y", alpha=0.25)
                self._savefig("01b_yield_by_group.svg")
        return df

    # --------------------------
    # Step 2: Split
    # --------------------------
    def split_data(self, df: pd.DataFrame) -> DataSplit:
        self._log("🔄 Step 2: Stratified train/test split...")
        self.split = stratified_split(df, self.config.target_col, self.config.train_fraction,
                                      seed=self.config.random_state, bins=self.config.strata_bins,
                                      verbose=self.config.verbose)
        self.artifacts['split'] = {'train': len(self.split.train_idx), 'test': len(self.split.test_idx),
                                   'stratified': self.split.stratified}
        self._log(f"✅ Train={len(self.split.train_idx)} Test={len(self.split.test_idx)} "
                  f"(stratified={self.split.stratified})")
        return self.split

    # --------------------------
    # Step 3: Recipe
    # --------------------------
    def build_recipe(self) -> FeatureRecipe:
        self._log("🔄 Step 3: Building preprocessing recipe (fit on Train only)...")
        rcfg = self.config.recipe
        if self.family.needs_scaling and not rcfg.normalize:
            rcfg = dataclasses.replace(rcfg, normalize=True)
        self.recipe = FeatureRecipe(rcfg, self.config.target_col, self.config.cat_cols)

        # fitted once here for reporting; tuning refits inside each fold
        fitted = self.recipe.clone().fit(self.split.train)
        self.artifacts['recipe_summary'] = fitted.summary()
        s = self.artifacts['recipe_summary']
        self._log(f"✅ {s['n_features']} model features | removed={s['removed']} "
                  f"zero-variance={s['zero_variance']} correlated={s['correlated']}")
        return self.recipe

    # --------------------------
    # Step 4: Tune
    # --------------------------
    def tune_hyperparameters(self) -> TuningResults:
        self._log(f"🔄 Step 4: Tuning {self.family.name} hyperparameters...")
        tuner = Tuner(self.family, self.recipe, self.config.tuning, seed=self.config.random_state,
                      verbose=self.config.verbose, strata_bins=self.config.strata_bins)
        self.tuning = tuner.tune(self.split.train)
        summary = self.tuning.summarize()
        self.artifacts['tuning_summary'] = summary
        self.artifacts['cv_strategy'] = (f"{self.config.tuning.cv_folds}-fold CV stratified on binned target, "
                                         f"{self.config.tuning.grid_type} search"
                                         f"{' with ANOVA racing' if self.config.tuning.racing else ''}")

        if self.config.save_plots:
            self._plot_tuning_profile(summary)
        return self.tuning

    def _plot_tuning_profile(self, summary: pd.DataFrame):
        numeric = [p for p, dim in self.family.space.items() if isinstance(dim, ParamRange)]
        rmse = summary[(summary['metric'] == 'rmse') & summary['mean'].notna()]
        if not numeric or rmse.empty:
            return
        fig, axes = plt.subplots(1, len(numeric), figsize=(5 * len(numeric), 4), squeeze=False)
        for ax, p in zip(axes[0], numeric):
            ax.errorbar(rmse[p], rmse['mean'], yerr=rmse['std_err'].fillna(0), fmt='o', alpha=0.7)
            if self.family.space[p].log:
                ax.set_xscale('log')
            ax.set_xlabel(p); ax.set_ylabel('CV RMSE'); ax.grid(alpha=0.3)
        fig.suptitle(f"Tuning profile - {self.family.name}")
        self._savefig("02_tuning_profile.svg")

    # --------------------------
    # Step 5: Select
    # --------------------------
    def select_candidates(self) -> SelectionResult:
        self._log("🔄 Step 5: Selecting candidates and comparing on held-out data...")
        selector = CandidateSelector(self.family, self.recipe, self.config.selection,
                                     seed=self.config.random_state, verbose=self.config.verbose)
        self.selection = selector.select(self.tuning, self.split.train, self.split.test)
        self.artifacts['candidate_comparison'] = self.selection.comparison
        self.artifacts['winner'] = {'config_id': self.selection.winner.config_id,
                                    'params': self.selection.winner.params,
                                    'sources': self.selection.winner.sources}
        self._log(f"🏆 Winner: config {self.selection.winner.config_id} "
                  f"({', '.join(self.selection.winner.sources)}) {self.selection.winner.params}")
        return self.selection

    # --------------------------
    # Step 6: Final fit
    # --------------------------
    def final_fit_evaluate(self) -> EvaluationResult:
        self._log("🔄 Step 6: Final fit and held-out evaluation...")
        evaluator = FinalFitEvaluator(self.family, self.recipe, seed=self.config.random_state)
        self.evaluation = evaluator.evaluate(self.selection.winner.params, self.split.train, self.split.test)
        self.artifacts['final_comparison'] = {'Test': self.evaluation.test_metrics,
                                              'Train': self.evaluation.train_metrics}

        self._log("\n📊 Final Model Metrics:")
        self._log("=" * 60)
        for split_name, m in self.artifacts['final_comparison'].items():
            self._log(f"{split_name}:")
            for mk, mv in m.items():
                self._log(f"  {mk}: {mv:.4f}")

        if self.config.save_plots:
            preds = self.evaluation.predictions
            plt.figure(figsize=(8, 7))
            plt.scatter(preds.observed, preds.predicted, alpha=0.6, s=20,
                        label=f"{self.family.name} (R²={self.evaluation.test_metrics['R2']:.3f})")
            lo, hi = preds.observed.min(), preds.observed.max()
            plt.plot([lo, hi], [lo, hi], 'k--', alpha=0.8, linewidth=2)
            plt.xlabel('Observed Yield'); plt.ylabel('Predicted Yield'); plt.title('Test Predictions vs Observed')
            plt.legend(); plt.grid(True, alpha=0.3)
            self._savefig("03a_observed_vs_predicted.svg")

            plt.figure(figsize=(8, 6))
            plt.scatter(preds.predicted, preds.residuals, alpha=0.6, s=20)
            plt.axhline(0, color='k', linestyle='--', linewidth=1)
            plt.xlabel("Fitted Values (Predicted Yield)"); plt.ylabel("Residuals"); plt.title("Residuals vs Fitted")
            plt.grid(alpha=0.3)
            self._savefig("03b_residuals.svg")
        return self.evaluation

    # --------------------------
    # Step 7: Interpretability
    # --------------------------
    def model_interpretability(self) -> Attribution:
        self._log("🔄 Step 7: Model interpretability (permutation SHAP)...")
        rec = self.evaluation.recipe
        X_train = rec.apply(self.split.train)
        X_test = rec.apply(self.split.test)
        explainer = Explainer(self.evaluation.model, X_train, self.config.explain, seed=self.config.random_state)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            self.attribution = explainer.explain(X_test)

        imp = self.attribution.importance()
        self.artifacts['shap_importance'] = imp
        self._log("Top features by mean |SHAP|:")
        for _, r in imp.head(10).iterrows():
            self._log(f"  {r['feature']}: {r['mean_abs_shap']:.4f}")

        if self.config.save_plots:
            obs = min(self.config.explain.observation, len(self.attribution.base_values) - 1)
            self.attribution.save_plots(self.figures_path, observation=obs)
        return self.attribution

    # --------------------------
    # Step 8: Artifacts
    # --------------------------
    def export_artifacts(self, path: str = None) -> str:
        self._log("🔄 Step 8: Exporting model artifacts...")
        path = path or f"{self.output_path}/{ARTIFACTS_FILE}"
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        artifacts_to_save = {
            'config': asdict(self.config),
            'model_name': self.family.name,
            'recipe': self.evaluation.recipe,
            'model': self.evaluation.model,
            'winner': self.artifacts.get('winner', {}),
            'test_metrics': self.evaluation.test_metrics,
            'created': datetime.now().isoformat(timespec='seconds'),
        }
        with open(path, 'wb') as f:
            pickle.dump(artifacts_to_save, f)
        self._log(f"✅ Saved model artifacts to '{path}'")
        return path

    # --------------------------
    # Step 9: Report
    # --------------------------
    def generate_final_report(self) -> str:
        self._log("🔄 Step 9: Generating final report...")
        ts = self.artifacts['target_stats']
        rs = self.artifacts.get('recipe_summary', {})
        winner = self.artifacts.get('winner', {})

        report = f"""
# Yield Model Report — {self.family.name}

## Data Overview
- **Dataset Size**: {self.artifacts['raw_data_shape'][0]} observations × {self.artifacts['raw_data_shape'][1]} columns
- **Target Variable**: {self.config.target_col} (mean {ts['mean']:.2f}, sd {ts['std']:.2f}, range {ts['min']:.1f} - {ts['max']:.1f})
- **Split**: {self.artifacts['split']['train']} train / {self.artifacts['split']['test']} test (stratified={self.artifacts['split']['stratified']})
- **Cross-Validation Strategy**: {self.artifacts.get('cv_strategy', '')}

## Preprocessing
- Removed identifier columns: {rs.get('removed', [])}
- Zero-variance columns dropped: {rs.get('zero_variance', [])}
- Correlated columns dropped: {rs.get('correlated', [])}
- Model features: {rs.get('n_features', 'N/A')}

## Tuning
- Configurations evaluated: {len(self.tuning.configs) if self.tuning else 'N/A'}
- Eliminated by racing: {len(self.tuning.eliminated) if self.tuning else 'N/A'}
- Failed fold fits: {self.tuning.n_failed() if self.tuning else 'N/A'}

## Candidate Comparison
"""
        comp = self.artifacts.get('candidate_comparison')
        if comp is not None:
            report += "| Rank | Config | Rules | CV RMSE | Test RMSE | Test R² |\n"
            report += "|------|--------|-------|---------|-----------|---------|\n"
            for _, r in comp.iterrows():
                report += (f"| {r['rank']} | {r['config_id']} | {r['sources']} | {r.get('cv_rmse', np.nan):.4f} "
                           f"| {r['test_rmse']:.4f} | {r['test_rsq']:.4f} |\n")

        report += f"""

## Winner
- **Config**: {winner.get('config_id')} from {', '.join(winner.get('sources', []))}
- **Parameters**: {winner.get('params')}

## Final Model Performance
| Split | RMSE | MAE | R² | Pearson r | Pred SD |
|-------|------|-----|----|-----------|---------|
"""
        for split_name, m in self.artifacts.get('final_comparison', {}).items():
            report += (f"| {split_name} | {m['RMSE']:.4f} | {m['MAE']:.4f} | {m['R2']:.4f} "
                       f"| {m['Pearson_r']:.4f} | {m['Pred_SD']:.4f} |\n")

        imp = self.artifacts.get('shap_importance')
        if imp is not None:
            report += "\n## Feature Attribution (mean |SHAP|)\n"
            report += "\n".join(f"- {r['feature']}: {r['mean_abs_shap']:.4f}" for _, r in imp.head(10).iterrows())

        report += f"""

---
*Report generated on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}*
"""
        os.makedirs(self.output_path, exist_ok=True)
        with open(f'{self.output_path}/{REPORT_FILE}', 'w') as f:
            f.write(report)

        self._log(f"✅ Final report saved to '{REPORT_FILE}'")
        return report

    def run(self, filepath: str = None, df: pd.DataFrame = None, export: bool = True) -> "YieldModeler":
        data = self.load_and_validate_data(filepath, df)
        self.split_data(data)
        self.build_recipe()
        self.tune_hyperparameters()
        self.select_candidates()
        self.final_fit_evaluate()
        self.model_interpretability()
        if export:
            self.export_artifacts()
            self.generate_final_report()
        return self


# ======================
# Runner
# ======================
def run_complete_yield_modelling(filepath: str, config: ModelConfig = None,
                                 output_path: str = OUTPUT_PATH) -> YieldModeler:
    config = config or ModelConfig()
    print("🚀 Starting YieldTune Modeling")
    print("=" * 60)

    modeler = YieldModeler(config, output_path=output_path)
    modeler.run(filepath)

    print("\n🎉 YieldTune Modeling Complete!")
    print("=" * 60)
    print("Generated files:")
    print("  📊 Figures: yieldtune_figures/ (01a.., 02_*, 03a.., 07a..07d)")
    print("  🤖 Artifacts: yieldtune_model_artifacts.pkl")
    print("  📋 Final report: yieldtune_final_report.md")

    print("\n📈 Pipeline Summary:")
    print(f"    Model family: {modeler.family.name}")
    print(f"    Winner: {modeler.selection.winner.params}")
    print(f"    Test RMSE: {modeler.evaluation.test_metrics['RMSE']:.4f}")
    print(f"    Test R²: {modeler.evaluation.test_metrics['R2']:.4f}")
    print("\n📊 Candidate Comparison:")
    print(modeler.selection.comparison.round(4).to_string(index=False))
    return modeler
