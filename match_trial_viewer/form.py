from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import tkinter as tk
from tkinter import ttk

from .models import (
    NO_CLIP,
    NOT_INTERPOLATED,
    FeatureAndMatchParameters,
    GeometricDescriptorAndMatchFilterParameters,
    GeometricDescriptorParameters,
    MatchDerivationParameters,
    SiftFeatureParameters,
    TrialParameters,
)

MODEL_TYPES = ["TRANSLATION", "RIGID", "SIMILARITY", "AFFINE"]
REGULARIZER_MODEL_TYPES = [NOT_INTERPOLATED] + MODEL_TYPES
MATCH_FILTERS = ["SINGLE_SET", "CONSENSUS_SETS", "AGGREGATED_CONSENSUS_SETS"]
CLIP_POSITIONS = [NO_CLIP, "LEFT", "RIGHT", "TOP", "BOTTOM"]
LOCALIZATIONS = ["NONE", "THREE_D_QUADRATIC"]
FILL_WITH_NOISE_CHOICES = ["", "true", "false"]


@dataclass(frozen=True)
class FormField:
    key: str
    label: str
    kind: str = "float"
    default: Any = ""
    choices: Sequence[str] = ()


def _match_fields(prefix: str, with_rod: bool, defaults: Mapping[str, Any]) -> List[FormField]:
    fields = [
        FormField(f"{prefix}ModelType", "Model type", "choice", defaults["ModelType"], MODEL_TYPES),
        FormField(
            f"{prefix}RegularizerModelType",
            "Regularizer model type",
            "choice",
            NOT_INTERPOLATED,
            REGULARIZER_MODEL_TYPES,
        ),
        FormField(f"{prefix}InterpolatedModelLambda", "Interpolated model lambda", "float", "0.1"),
        FormField(f"{prefix}Iterations", "Iterations", "int", defaults["Iterations"]),
        FormField(f"{prefix}MaxEpsilon", "Max epsilon", "float", defaults["MaxEpsilon"]),
        FormField(f"{prefix}MinInlierRatio", "Min inlier ratio", "float", "0.0"),
        FormField(f"{prefix}MinNumInliers", "Min num inliers", "int", defaults["MinNumInliers"]),
        FormField(f"{prefix}MaxTrust", "Max trust", "float", "3.0"),
        FormField(f"{prefix}Filter", "Filter", "choice", "SINGLE_SET", MATCH_FILTERS),
        FormField(f"{prefix}FullScaleCoverageRadius", "Full scale coverage radius", "float", "300.0"),
    ]
    if with_rod:
        fields.insert(1, FormField(f"{prefix}Rod", "Rod", "float", "0.92"))
    return fields


TILE_FIELDS = [
    FormField("pRenderParametersUrl", "p render parameters URL", "text"),
    FormField("qRenderParametersUrl", "q render parameters URL", "text"),
    FormField("fillWithNoise", "Fill with noise", "choice", "", FILL_WITH_NOISE_CHOICES),
]
SIFT_FIELDS = [
    FormField("fdSize", "Feature descriptor size", "int", "8"),
    FormField("minScale", "Min scale", "float", "0.125"),
    FormField("maxScale", "Max scale", "float", "1.0"),
    FormField("steps", "Steps", "int", "5"),
]
MATCH_FIELDS = _match_fields(
    "match",
    with_rod=True,
    defaults={"ModelType": "AFFINE", "Iterations": "1000", "MaxEpsilon": "20.0", "MinNumInliers": "10"},
)
CLIP_FIELDS = [
    FormField("pClipPosition", "p clip position", "choice", NO_CLIP, CLIP_POSITIONS),
    FormField("clipPixels", "Clip pixels", "int", "500"),
]
GEOMETRIC_FIELDS = [
    FormField("gdRenderScale", "Render scale", "float", "0.25"),
    FormField("gdRenderWithFilter", "Render with filter", "bool", True),
    FormField("gdRenderFilterListName", "Render filter list name", "text"),
    FormField("gdNumberOfNeighbors", "Number of neighbors", "int", "3"),
    FormField("gdRedundancy", "Redundancy", "int", "1"),
    FormField("gdSignificance", "Significance", "float", "2.0"),
    FormField("gdSigma", "Sigma", "float", "2.04"),
    FormField("gdThreshold", "Threshold", "float", "0.008"),
    FormField("gdLocalization", "Localization", "choice", "THREE_D_QUADRATIC", LOCALIZATIONS),
    FormField("gdLookForMinima", "Look for minima", "bool", True),
    FormField("gdLookForMaxima", "Look for maxima", "bool", False),
    FormField("gdSimilarOrientation", "Similar orientation", "bool", True),
    FormField("gdFullScaleBlockRadius", "Full scale block radius", "float", "300.0"),
    FormField("gdFullScaleNonMaxSuppressionRadius", "Full scale non-max suppression radius", "float", "60.0"),
    FormField("gdStoredMatchWeight", "Stored match weight", "float", "0.39"),
] + _match_fields(
    "gdMatch",
    with_rod=False,
    defaults={"ModelType": "RIGID", "Iterations": "10000", "MaxEpsilon": "5.0", "MinNumInliers": "20"},
)
INCLUDE_GEOMETRIC = FormField("includeGeometric", "Include geometric descriptor matching", "bool", False)

ALL_FIELDS = TILE_FIELDS + SIFT_FIELDS + MATCH_FIELDS + CLIP_FIELDS + [INCLUDE_GEOMETRIC] + GEOMETRIC_FIELDS
FIELDS_BY_KEY = {field.key: field for field in ALL_FIELDS}


def default_form_values() -> Dict[str, Any]:
    return {field.key: field.default for field in ALL_FIELDS}


def _label(key: str) -> str:
    field = FIELDS_BY_KEY.get(key)
    return field.label if field else key


def _text(values: Mapping[str, Any], key: str) -> str:
    value = values.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _int(values: Mapping[str, Any], key: str) -> int:
    text = _text(values, key)
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"{_label(key)} must be an integer (got {text!r}).") from None


def _float(values: Mapping[str, Any], key: str) -> float:
    text = _text(values, key)
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"{_label(key)} must be a number (got {text!r}).") from None


def _optional_float(values: Mapping[str, Any], key: str) -> Optional[float]:
    if not _text(values, key):
        return None
    return _float(values, key)


def _bool(values: Mapping[str, Any], key: str) -> bool:
    value = values.get(key)
    if isinstance(value, bool):
        return value
    return _text(values, key).lower() in ("1", "true", "yes", "on")


def _optional_bool(values: Mapping[str, Any], key: str) -> Optional[bool]:
    if not _text(values, key):
        return None
    return _bool(values, key)


def parse_match_derivation(values: Mapping[str, Any], prefix: str) -> MatchDerivationParameters:
    regularizer = _text(values, f"{prefix}RegularizerModelType")
    interpolated = bool(regularizer) and regularizer != NOT_INTERPOLATED
    return MatchDerivationParameters(
        model_type=_text(values, f"{prefix}ModelType"),
        iterations=_int(values, f"{prefix}Iterations"),
        max_epsilon=_float(values, f"{prefix}MaxEpsilon"),
        min_inlier_ratio=_float(values, f"{prefix}MinInlierRatio"),
        min_num_inliers=_int(values, f"{prefix}MinNumInliers"),
        max_trust=_float(values, f"{prefix}MaxTrust"),
        filter=_text(values, f"{prefix}Filter"),
        full_scale_coverage_radius=_optional_float(values, f"{prefix}FullScaleCoverageRadius"),
        rod=_float(values, f"{prefix}Rod") if prefix == "match" else None,
        regularizer_model_type=regularizer if interpolated else None,
        interpolated_model_lambda=(
            _optional_float(values, f"{prefix}InterpolatedModelLambda") if interpolated else None
        ),
    )


def parse_trial_parameters(values: Mapping[str, Any]) -> TrialParameters:
    clip_position = _text(values, "pClipPosition")
    has_clip = bool(clip_position) and clip_position != NO_CLIP
    feature_and_match = FeatureAndMatchParameters(
        sift=SiftFeatureParameters(
            fd_size=_int(values, "fdSize"),
            min_scale=_float(values, "minScale"),
            max_scale=_float(values, "maxScale"),
            steps=_int(values, "steps"),
        ),
        match=parse_match_derivation(values, "match"),
        p_clip_position=clip_position if has_clip else None,
        clip_pixels=_int(values, "clipPixels") if has_clip else None,
    )

    geometric = None
    if _bool(values, "includeGeometric"):
        geometric = GeometricDescriptorAndMatchFilterParameters(
            render_scale=_float(values, "gdRenderScale"),
            render_with_filter=_bool(values, "gdRenderWithFilter"),
            descriptor=GeometricDescriptorParameters(
                number_of_neighbors=_int(values, "gdNumberOfNeighbors"),
                redundancy=_int(values, "gdRedundancy"),
                significance=_float(values, "gdSignificance"),
                sigma=_float(values, "gdSigma"),
                threshold=_float(values, "gdThreshold"),
                localization=_text(values, "gdLocalization"),
                look_for_minima=_bool(values, "gdLookForMinima"),
                look_for_maxima=_bool(values, "gdLookForMaxima"),
                similar_orientation=_bool(values, "gdSimilarOrientation"),
                full_scale_block_radius=_float(values, "gdFullScaleBlockRadius"),
                full_scale_non_max_suppression_radius=_float(values, "gdFullScaleNonMaxSuppressionRadius"),
                gd_stored_match_weight=_float(values, "gdStoredMatchWeight"),
            ),
            match=parse_match_derivation(values, "gdMatch"),
            render_filter_list_name=_text(values, "gdRenderFilterListName") or None,
        )

    return TrialParameters(
        p_render_parameters_url=_text(values, "pRenderParametersUrl"),
        q_render_parameters_url=_text(values, "qRenderParametersUrl"),
        feature_and_match=feature_and_match,
        fill_with_noise=_optional_bool(values, "fillWithNoise"),
        geometric=geometric,
    )


def _match_form_values(match: MatchDerivationParameters, prefix: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {
        f"{prefix}ModelType": match.model_type,
        f"{prefix}Iterations": str(match.iterations),
        f"{prefix}MaxEpsilon": str(match.max_epsilon),
        f"{prefix}MinInlierRatio": str(match.min_inlier_ratio),
        f"{prefix}MinNumInliers": str(match.min_num_inliers),
        f"{prefix}MaxTrust": str(match.max_trust),
        f"{prefix}Filter": match.filter,
    }
    if match.full_scale_coverage_radius is not None:
        values[f"{prefix}FullScaleCoverageRadius"] = str(match.full_scale_coverage_radius)
    if match.is_interpolated:
        values[f"{prefix}RegularizerModelType"] = match.regularizer_model_type
        values[f"{prefix}InterpolatedModelLambda"] = str(match.interpolated_model_lambda)
    if prefix == "match" and match.rod is not None:
        values[f"{prefix}Rod"] = str(match.rod)
    return values


def form_values_for(parameters: TrialParameters) -> Dict[str, Any]:
    """Form values that reproduce ``parameters``; keys that should stay untouched are omitted."""
    fm = parameters.feature_and_match
    values: Dict[str, Any] = {
        "pRenderParametersUrl": parameters.p_render_parameters_url,
        "qRenderParametersUrl": parameters.q_render_parameters_url,
        "fdSize": str(fm.sift.fd_size),
        "minScale": str(fm.sift.min_scale),
        "maxScale": str(fm.sift.max_scale),
        "steps": str(fm.sift.steps),
    }
    values.update(_match_form_values(fm.match, "match"))
    if parameters.fill_with_noise is not None:
        values["fillWithNoise"] = "true" if parameters.fill_with_noise else "false"
    if fm.has_clip:
        values["pClipPosition"] = fm.p_clip_position
        values["clipPixels"] = str(fm.clip_pixels)

    geometric = parameters.geometric
    if geometric is not None:
        descriptor = geometric.descriptor
        values.update(
            {
                "includeGeometric": True,
                "gdRenderScale": str(geometric.render_scale),
                "gdRenderWithFilter": geometric.render_with_filter,
                "gdNumberOfNeighbors": str(descriptor.number_of_neighbors),
                "gdRedundancy": str(descriptor.redundancy),
                "gdSignificance": str(descriptor.significance),
                "gdSigma": str(descriptor.sigma),
                "gdThreshold": str(descriptor.threshold),
                "gdLocalization": descriptor.localization,
                "gdLookForMinima": descriptor.look_for_minima,
                "gdLookForMaxima": descriptor.look_for_maxima,
                "gdSimilarOrientation": descriptor.similar_orientation,
                "gdFullScaleBlockRadius": str(descriptor.full_scale_block_radius),
                "gdFullScaleNonMaxSuppressionRadius": str(descriptor.full_scale_non_max_suppression_radius),
                "gdStoredMatchWeight": str(descriptor.gd_stored_match_weight),
            }
        )
        if geometric.render_filter_list_name is not None:
            values["gdRenderFilterListName"] = geometric.render_filter_list_name
        values.update(_match_form_values(geometric.match, "gdMatch"))
    return values


class TrialParametersForm(ttk.LabelFrame):
    def __init__(self, parent: tk.Widget, on_run: Callable[[], None], pad: int = 6) -> None:
        super().__init__(parent, text="New Trial", style="Viewer.TLabelframe")
        self.pad = pad
        self.variables: Dict[str, tk.Variable] = {}
        self.url_entries: List[ttk.Entry] = []
        self.error_var = tk.StringVar(value="")

        self._build_group(self, TILE_FIELDS)
        self._build_group(self._section("SIFT Parameters"), SIFT_FIELDS)
        self._build_group(self._section("Match Parameters"), MATCH_FIELDS)
        self._build_group(self._section("Clip Parameters"), CLIP_FIELDS)

        include_var = tk.BooleanVar(value=INCLUDE_GEOMETRIC.default)
        self.variables[INCLUDE_GEOMETRIC.key] = include_var
        ttk.Checkbutton(
            self,
            text=INCLUDE_GEOMETRIC.label,
            variable=include_var,
            command=self._on_geometric_toggle,
            style="Panel.TCheckbutton",
        ).pack(anchor="w", pady=(self.pad, 0))
        self.geometric_frame = ttk.LabelFrame(self, text="Geometric Descriptor Parameters", style="Viewer.TLabelframe")
        self._build_group(self.geometric_frame, GEOMETRIC_FIELDS)

        self.actions = ttk.Frame(self, style="Panel.TFrame")
        self.actions.pack(fill="x", pady=(self.pad, 0))
        self.run_button = ttk.Button(self.actions, text="Run Trial", command=on_run, style="Primary.TButton")
        self.run_button.pack(side="left")
        self.running_label = ttk.Label(self.actions, text="Running trial...", style="PanelMuted.TLabel")
        ttk.Label(self, textvariable=self.error_var, style="Error.TLabel", wraplength=280, justify="left").pack(
            fill="x", pady=(self.pad, 0)
        )

    def _section(self, title: str) -> ttk.LabelFrame:
        frame = ttk.LabelFrame(self, text=title, style="Viewer.TLabelframe")
        frame.pack(fill="x", pady=(self.pad, 0))
        return frame

    def _build_group(self, parent: ttk.Frame, fields: Sequence[FormField]) -> None:
        for field in fields:
            if field.kind == "bool":
                self._labeled_check(parent, field)
            elif field.kind == "choice":
                self._labeled_combo(parent, field)
            else:
                self._labeled_entry(parent, field)

    def _labeled_entry(self, parent: ttk.Frame, field: FormField) -> ttk.Entry:
        variable = tk.StringVar(value=str(field.default))
        self.variables[field.key] = variable
        frame = ttk.Frame(parent, style="Panel.TFrame")
        frame.pack(fill="x", pady=(0, self.pad))
        ttk.Label(frame, text=field.label, style="Panel.TLabel").pack(anchor="w")
        entry = ttk.Entry(frame, textvariable=variable, style="Viewer.TEntry")
        entry.pack(fill="x")
        if field.key.endswith("RenderParametersUrl"):
            self.url_entries.append(entry)
        return entry

    def _labeled_combo(self, parent: ttk.Frame, field: FormField) -> ttk.Combobox:
        variable = tk.StringVar(value=str(field.default))
        self.variables[field.key] = variable
        frame = ttk.Frame(parent, style="Panel.TFrame")
        frame.pack(fill="x", pady=(0, self.pad))
        ttk.Label(frame, text=field.label, style="Panel.TLabel").pack(anchor="w")
        combo = ttk.Combobox(frame, textvariable=variable, values=list(field.choices), state="readonly")
        combo.pack(fill="x")
        return combo

    def _labeled_check(self, parent: ttk.Frame, field: FormField) -> ttk.Checkbutton:
        variable = tk.BooleanVar(value=bool(field.default))
        self.variables[field.key] = variable
        check = ttk.Checkbutton(parent, text=field.label, variable=variable, style="Panel.TCheckbutton")
        check.pack(anchor="w", pady=(0, self.pad))
        return check

    def _on_geometric_toggle(self) -> None:
        if self.variables[INCLUDE_GEOMETRIC.key].get():
            self.geometric_frame.pack(fill="x", pady=(self.pad, 0), before=self.actions)
        else:
            self.geometric_frame.pack_forget()

    def read(self) -> Dict[str, Any]:
        return {key: variable.get() for key, variable in self.variables.items()}

    def populate(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            variable = self.variables.get(key)
            if variable is not None:
                variable.set(value)
        self._on_geometric_toggle()

    def set_url(self, key: str, url: str) -> None:
        self.variables[key].set(url)

    def set_running(self, running: bool) -> None:
        self.run_button.configure(state="disabled" if running else "normal")
        if running:
            self.running_label.pack(side="left", padx=(self.pad, 0))
        else:
            self.running_label.pack_forget()

    def show_error(self, message: str) -> None:
        self.error_var.set(message)
