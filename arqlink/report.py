"""
Session Report

- SessionReport: final counters of one session, both halves merged
- generate_session_report: PDF rendering with configuration, sender and
  receiver tables, and the acknowledgment bitmap
"""

import io
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import List, Optional

from reportlab.graphics.charts.barcharts import VerticalBarChart
from reportlab.graphics.shapes import Drawing, Rect, String
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
)

from .reliability.policy import PROTOCOL_NAMES, ProtocolMode, ProtocolPolicy
from .reliability.receiver import ReceiverStats
from .reliability.sender import SenderWindow

BITMAP_COLUMNS = 32
BITMAP_CELL = 12


@dataclass
class SessionReport:
    """Outcome of one session."""
    protocol_mode: str
    total_packets: int
    window_size: int
    success: bool
    failure: Optional[str] = None

    # Sender
    packets_sent: int = 0
    packets_lost: int = 0
    retransmissions: int = 0
    timeouts: int = 0
    acks_received: int = 0
    stale_acks: int = 0
    corrupted_acks: int = 0
    sender_transport_errors: int = 0
    bytes_sent: int = 0

    # Receiver
    packets_received: int = 0
    corrupted_packets: int = 0
    out_of_order: int = 0
    duplicate_packets: int = 0
    out_of_window: int = 0
    packets_delivered: int = 0
    bytes_delivered: int = 0
    acks_sent: int = 0
    acks_dropped: int = 0

    ack_bitmap: List[bool] = field(default_factory=list)
    lost_packets: List[int] = field(default_factory=list)
    duration: float = 0.0
    final_timeout: float = 0.0

    @classmethod
    def from_sender(cls, window: SenderWindow, failure: Optional[str] = None) -> 'SessionReport':
        stats = window.stats
        with window.lock:
            ack_bitmap = list(window.acked)
            lost_packets = sorted(window.lost_packets)
            complete = window.complete
        return cls(
            protocol_mode=window.policy.mode.value,
            total_packets=window.total,
            window_size=window.window_size,
            success=complete and failure is None,
            failure=failure,
            packets_sent=stats.packets_sent,
            packets_lost=stats.packets_lost,
            retransmissions=stats.retransmissions,
            timeouts=stats.timeouts,
            acks_received=stats.acks_received,
            stale_acks=stats.stale_acks,
            corrupted_acks=stats.corrupted_acks,
            sender_transport_errors=stats.transport_errors,
            bytes_sent=stats.bytes_sent,
            ack_bitmap=ack_bitmap,
            lost_packets=lost_packets,
            duration=stats.duration,
            final_timeout=window.timer.timeout.current
        )

    def merge_receiver(self, stats: ReceiverStats) -> 'SessionReport':
        """Return a copy carrying the receiver's counters."""
        return replace(
            self,
            packets_received=stats.packets_received,
            corrupted_packets=stats.corrupted_packets,
            out_of_order=stats.out_of_order,
            duplicate_packets=stats.duplicate_packets,
            out_of_window=stats.out_of_window,
            packets_delivered=stats.packets_delivered,
            bytes_delivered=stats.bytes_delivered,
            acks_sent=stats.acks_sent,
            acks_dropped=stats.acks_dropped
        )

    @property
    def protocol_name(self) -> str:
        return PROTOCOL_NAMES[ProtocolMode(self.protocol_mode)]

    @property
    def efficiency(self) -> float:
        transmissions = self.packets_sent + self.retransmissions
        if transmissions > 0:
            return self.packets_sent / transmissions
        return 0.0

    def to_dict(self) -> dict:
        result = asdict(self)
        result['efficiency'] = self.efficiency
        return result


def _table_style(header_color: str, stripe_color: str) -> TableStyle:
    return TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(header_color)),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('ALIGN', (1, 0), (1, -1), 'CENTER'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#d1d5db')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor(stripe_color)]),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 6),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
    ])


def ack_bitmap_drawing(ack_bitmap: List[bool], lost_packets: List[int]) -> Drawing:
    """
    One cell per sequence number: green when acknowledged, red when never
    acknowledged. Cells of packets that lost at least one transmission get
    an orange border.
    """
    rows = max(1, -(-len(ack_bitmap) // BITMAP_COLUMNS))
    width = BITMAP_COLUMNS * BITMAP_CELL
    height = rows * BITMAP_CELL
    drawing = Drawing(width, height + 14)

    lost = set(lost_packets)
    for seq_no, acked in enumerate(ack_bitmap):
        row, col = divmod(seq_no, BITMAP_COLUMNS)
        cell = Rect(
            col * BITMAP_CELL, height - (row + 1) * BITMAP_CELL,
            BITMAP_CELL - 1, BITMAP_CELL - 1,
            fillColor=colors.HexColor('#22c55e' if acked else '#ef4444'),
            strokeColor=colors.HexColor('#f97316') if seq_no in lost else None,
            strokeWidth=1.5 if seq_no in lost else 0
        )
        drawing.add(cell)

    drawing.add(String(0, height + 4,
                       f"{sum(ack_bitmap)}/{len(ack_bitmap)} acknowledged, "
                       f"{len(lost)} with simulated loss",
                       fontSize=8, fillColor=colors.HexColor('#6b7280')))
    return drawing


def transmission_chart(report: SessionReport) -> Drawing:
    drawing = Drawing(6 * inch, 2.2 * inch)
    chart = VerticalBarChart()
    chart.x = 40
    chart.y = 30
    chart.width = 5.2 * inch
    chart.height = 1.6 * inch
    values = [
        report.packets_sent,
        report.retransmissions,
        report.packets_lost,
        report.timeouts,
        report.packets_delivered
    ]
    chart.data = [values]
    chart.categoryAxis.categoryNames = ['Sent', 'Retransmitted', 'Lost', 'Timeouts', 'Delivered']
    chart.categoryAxis.labels.fontSize = 8
    chart.valueAxis.valueMin = 0
    chart.valueAxis.valueMax = max(values + [1])
    chart.valueAxis.labels.fontSize = 8
    chart.bars[0].fillColor = colors.HexColor('#3b82f6')
    drawing.add(chart)
    return drawing


def generate_session_report(report: SessionReport, session_id: Optional[str] = None) -> bytes:
    """Render the session report as a PDF and return its bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=22,
        spaceAfter=20,
        textColor=colors.HexColor('#1e40af')
    )
    heading_style = ParagraphStyle(
        'ReportHeading',
        parent=styles['Heading2'],
        fontSize=15,
        spaceBefore=18,
        spaceAfter=8,
        textColor=colors.HexColor('#1e3a8a')
    )
    normal_style = styles['Normal']
    rule_color = colors.HexColor('#e5e7eb')

    story = []
    story.append(Paragraph("ARQ Session Report", title_style))
    story.append(HRFlowable(width="100%", thickness=1, color=rule_color))
    story.append(Spacer(1, 10))

    outcome = "Completed" if report.success else f"Failed: {report.failure or 'incomplete'}"
    meta_data = [
        ["Report Generated:", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
        ["Session ID:", session_id or "-"],
        ["Outcome:", outcome],
        ["Duration:", f"{report.duration:.3f} s"]
    ]
    meta_table = Table(meta_data, colWidths=[2*inch, 4.5*inch])
    meta_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#6b7280')),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
    ]))
    story.append(meta_table)

    # Configuration
    story.append(Paragraph("1. Configuration", heading_style))
    story.append(HRFlowable(width="100%", thickness=0.5, color=rule_color))
    policy = ProtocolPolicy.for_mode(report.protocol_mode, report.window_size)
    config_text = f"""
    <b>Protocol:</b> {report.protocol_name}<br/>
    <b>Window Size:</b> {report.window_size} packets<br/>
    <b>Total Packets:</b> {report.total_packets}<br/>
    <b>ACK Mode:</b> {policy.ack_mode.value.title()}<br/>
    <b>Retransmission Scope:</b> {policy.retransmit_scope.value.replace('_', ' ').title()}<br/>
    <b>Final RTO:</b> {report.final_timeout * 1000:.0f} ms
    """
    story.append(Paragraph(config_text, normal_style))

    # Sender
    story.append(Paragraph("2. Sender Statistics", heading_style))
    story.append(HRFlowable(width="100%", thickness=0.5, color=rule_color))
    sender_data = [
        ["Metric", "Value", "Description"],
        ["Packets Sent", str(report.packets_sent), "First transmissions"],
        ["Retransmissions", str(report.retransmissions), "Resent after a timeout"],
        ["Packets Lost", str(report.packets_lost), "Transmissions dropped in transit"],
        ["Timeouts", str(report.timeouts), "Timer expiries"],
        ["ACKs Received", str(report.acks_received), "All acknowledgments, stale included"],
        ["Stale ACKs", str(report.stale_acks), "Duplicate or out-of-window acknowledgments"],
        ["Corrupted ACKs", str(report.corrupted_acks), "Undecodable acknowledgments"],
        ["Bytes Sent", format_bytes(report.bytes_sent), "Unique payload bytes"],
        ["Efficiency", f"{report.efficiency * 100:.1f}%", "Unique packets over transmissions"]
    ]
    sender_table = Table(sender_data, colWidths=[1.6*inch, 1.4*inch, 3.5*inch])
    sender_table.setStyle(_table_style('#1e40af', '#f9fafb'))
    story.append(sender_table)

    # Receiver
    story.append(Paragraph("3. Receiver Statistics", heading_style))
    story.append(HRFlowable(width="100%", thickness=0.5, color=rule_color))
    receiver_data = [
        ["Metric", "Value", "Description"],
        ["Packets Received", str(report.packets_received), "Valid data packets, duplicates included"],
        ["Corrupted", str(report.corrupted_packets), "Dropped on checksum or format error"],
        ["Out-of-Order", str(report.out_of_order), "Arrived ahead of the expected packet"],
        ["Duplicates", str(report.duplicate_packets), "Already accepted or buffered"],
        ["Out-of-Window", str(report.out_of_window), "Dropped without acknowledgment"],
        ["Delivered", str(report.packets_delivered), "Handed to the application in order"],
        ["ACKs Sent", str(report.acks_sent), "Acknowledgments put on the wire"],
        ["ACKs Dropped", str(report.acks_dropped), "Acknowledgments lost in transit"],
        ["Bytes Delivered", format_bytes(report.bytes_delivered), "Payload bytes delivered"]
    ]
    receiver_table = Table(receiver_data, colWidths=[1.6*inch, 1.4*inch, 3.5*inch])
    receiver_table.setStyle(_table_style('#059669', '#f0fdf4'))
    story.append(receiver_table)

    # Transmissions and acknowledgments
    story.append(Paragraph("4. Transmissions", heading_style))
    story.append(HRFlowable(width="100%", thickness=0.5, color=rule_color))
    story.append(transmission_chart(report))
    story.append(Spacer(1, 10))
    story.append(Paragraph("Acknowledgment Bitmap", styles['Heading3']))
    story.append(ack_bitmap_drawing(report.ack_bitmap, report.lost_packets))

    if report.lost_packets:
        shown = ', '.join(str(seq) for seq in report.lost_packets[:100])
        if len(report.lost_packets) > 100:
            shown += f", ... ({len(report.lost_packets) - 100} more)"
        story.append(Spacer(1, 8))
        story.append(Paragraph(f"<b>Lost sequence numbers:</b> {shown}", normal_style))

    story.append(Spacer(1, 20))
    story.append(HRFlowable(width="100%", thickness=1, color=rule_color))
    footer_style = ParagraphStyle(
        'Footer',
        parent=normal_style,
        fontSize=8,
        textColor=colors.HexColor('#9ca3af'),
        alignment=1
    )
    story.append(Spacer(1, 8))
    story.append(Paragraph(
        f"Generated by arqlink | {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        footer_style
    ))

    doc.build(story)
    return buffer.getvalue()


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable string."""
    if bytes_val == 0:
        return "0 B"
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    i = 0
    while bytes_val >= 1024 and i < len(units) - 1:
        bytes_val /= 1024
        i += 1
    return f"{bytes_val:.2f} {units[i]}"
