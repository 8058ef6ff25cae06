from __future__ import annotations

from typing import List, Optional, Sequence

from .models import MatchDerivationParameters, MatchStats, TrialResult

HIGH_DELTA_THRESHOLD = 8.0
DELETED_ID_SUFFIX_LENGTH = 7


def number_with_commas(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


def format_delta(value: float) -> str:
    text = f"{value:.1f}"
    if value > HIGH_DELTA_THRESHOLD:
        text += " (!)"
    return text


def standard_deviation_text(axis: str, aggregate: Optional[float], values: Sequence[float]) -> str:
    text = f"Delta {axis} Standard Deviation:"
    if len(values) > 1:
        if aggregate is not None:
            text += f" aggregate {format_delta(aggregate)},"
        text += " sets [ " + ", ".join(format_delta(value) for value in values) + " ] pixels"
    elif aggregate is not None:
        text += f" {format_delta(aggregate)} pixels"
    else:
        text += " n/a"
    return text


def coverage_text(coverage_pixels: Optional[int], image_pixels: Optional[int]) -> str:
    if coverage_pixels is None or image_pixels is None or image_pixels == 0:
        return ""
    percentage = round(coverage_pixels / image_pixels * 100)
    return (
        f"Overlapping Area Coverage: {number_with_commas(coverage_pixels)} out of "
        f"{number_with_commas(image_pixels)} pixels ({percentage}%)"
    )


def consensus_set_text(sizes: Sequence[int]) -> str:
    if len(sizes) == 1:
        if sizes[0] == 0:
            return "NO matches were"
        return f"1 consensus set with {sizes[0]} matches was"
    joined = ",".join(str(size) for size in sizes)
    return f"{len(sizes)} consensus sets with [{joined}] matches were"


def match_stats_text(stats: MatchStats) -> str:
    lines = [
        f"{consensus_set_text(stats.consensus_set_sizes)} derived in {stats.match_derivation_ms} ms",
        standard_deviation_text("X", stats.aggregate_delta_x_sd, stats.consensus_set_delta_x_sds),
        standard_deviation_text("Y", stats.aggregate_delta_y_sd, stats.consensus_set_delta_y_sds),
    ]
    coverage = coverage_text(stats.overlapping_coverage_pixels, stats.overlapping_image_pixels)
    if coverage:
        lines.append(coverage)
    return "\n".join(lines)


def feature_stats_text(kind: str, stats: MatchStats) -> List[str]:
    noun = kind.lower()
    return [
        f"p: {stats.p_feature_count} {noun}s were derived in {stats.p_feature_derivation_ms} ms",
        f"q: {stats.q_feature_count} {noun}s were derived in {stats.q_feature_derivation_ms} ms",
    ]


def render_parameters_label(url: str) -> str:
    parts = url.split("/")
    if len(parts) > 2:
        return parts[-2]
    return url


def deleted_trial_label(trial_id: str) -> str:
    return f"{trial_id[-DELETED_ID_SUFFIX_LENGTH:]} DELETED"


def match_parameters_lines(match: MatchDerivationParameters, include_rod: bool) -> List[str]:
    lines = [f"modelType: {match.model_type}"]
    if include_rod:
        lines.append(f"rod: {match.rod}")
    lines.extend(
        [
            f"iterations: {match.iterations}  maxEpsilon: {match.max_epsilon}",
            f"minInlierRatio: {match.min_inlier_ratio}  minNumInliers: {match.min_num_inliers}",
            f"maxTrust: {match.max_trust}  filter: {match.filter}",
            f"fullScaleCoverageRadius: {match.full_scale_coverage_radius}",
        ]
    )
    if match.is_interpolated:
        lines.append(
            f"regularizerModelType: {match.regularizer_model_type}  "
            f"interpolatedModelLambda: {match.interpolated_model_lambda}"
        )
    if match.max_num_inliers is not None:
        lines.append(f"maxNumInliers: {match.max_num_inliers}")
    return lines


def trial_summary_text(result: TrialResult, render_scale: float) -> str:
    """Plain-text summary of a trial's parameters and statistics for the sidebar."""
    parameters = result.parameters
    fm = parameters.feature_and_match
    lines = [
        f"Render Scale: {render_scale}",
        f"p: {render_parameters_label(parameters.p_render_parameters_url)}",
        f"q: {render_parameters_label(parameters.q_render_parameters_url)}",
    ]
    if parameters.fill_with_noise is not None:
        lines.append(f"Fill With Noise: {parameters.fill_with_noise}")
    lines.extend(
        [
            "",
            "SIFT Parameters:",
            f"fdSize: {fm.sift.fd_size}  minScale: {fm.sift.min_scale}  "
            f"maxScale: {fm.sift.max_scale}  steps: {fm.sift.steps}",
        ]
    )
    if fm.has_clip:
        lines.append(f"Clip Parameters: pRelativePosition: {fm.p_clip_position}  clipPixels: {fm.clip_pixels}")
    lines.append("")
    lines.append("Match Parameters:")
    lines.extend(match_parameters_lines(fm.match, include_rod=True))
    lines.append("")
    lines.extend(feature_stats_text("Feature", result.stats))
    lines.append(match_stats_text(result.stats))

    geometric = parameters.geometric
    if geometric is not None:
        descriptor = geometric.descriptor
        lines.extend(
            [
                "",
                "Geometric Descriptor Parameters:",
                f"renderScale: {geometric.render_scale}  renderWithFilter: {geometric.render_with_filter}",
            ]
        )
        if geometric.render_filter_list_name is not None:
            lines.append(f"renderFilterListName: {geometric.render_filter_list_name}")
        lines.extend(
            [
                f"similarOrientation: {descriptor.similar_orientation}  "
                f"numberOfNeighbors: {descriptor.number_of_neighbors}  redundancy: {descriptor.redundancy}",
                f"significance: {descriptor.significance}  sigma: {descriptor.sigma}  "
                f"threshold: {descriptor.threshold}  localization: {descriptor.localization}",
                f"lookForMinima: {descriptor.look_for_minima}  lookForMaxima: {descriptor.look_for_maxima}",
                f"fullScaleBlockRadius: {descriptor.full_scale_block_radius}  "
                f"fullScaleNonMaxSuppressionRadius: {descriptor.full_scale_non_max_suppression_radius}",
                f"gdStoredMatchWeight: {descriptor.gd_stored_match_weight}",
                "",
                "Geometric Match Parameters:",
            ]
        )
        lines.extend(match_parameters_lines(geometric.match, include_rod=False))
        if result.gd_stats is not None:
            lines.append("")
            lines.extend(feature_stats_text("Peak", result.gd_stats))
            lines.append(match_stats_text(result.gd_stats))

    lines.append("")
    lines.append(f"Took {number_with_commas(result.total_ms)} ms to process")
    return "\n".join(lines)
