"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    ProgressDisplay,
    console,
    create_histogram,
    print_comparison,
    print_final_results,
    print_header,
    print_latency_details,
    print_plan,
    print_speed_result,
    print_transport_result,
    print_transport_start,
)
from .output import (
    create_report_json,
    format_csv_header,
    format_csv_row,
    format_csv_rows,
    format_text_result,
    save_json,
)

__all__ = [
    "ProgressDisplay",
    "console",
    "create_histogram",
    "create_report_json",
    "format_csv_header",
    "format_csv_row",
    "format_csv_rows",
    "format_text_result",
    "print_comparison",
    "print_final_results",
    "print_header",
    "print_latency_details",
    "print_plan",
    "print_speed_result",
    "print_transport_result",
    "print_transport_start",
    "save_json",
]
