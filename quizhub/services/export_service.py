"""Result card and question bank exports (PDF via reportlab, DOCX via python-docx)."""

import io
import re
from datetime import datetime, timezone
from html import escape

from docx import Document
from docx.shared import Pt

from quizhub.services import quiz_rules

REPORTLAB_AVAILABLE = True
try:
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
    from reportlab.lib.units import mm
    from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
except Exception:
    REPORTLAB_AVAILABLE = False

DOCX_MIME_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
PDF_MIME_TYPE = 'application/pdf'
OPTION_LETTERS = ['A', 'B', 'C', 'D', 'E', 'F']
MAX_EXPORT_QUESTIONS = 500

_BREAK_RE = re.compile(r'<br\s*/?>', re.IGNORECASE)
_TAG_RE = re.compile(r'<[^>]*>?')
_FILENAME_RE = re.compile(r'[^a-z0-9]', re.IGNORECASE)


def plain_text(value):
    text = _BREAK_RE.sub('\n', str(value or ''))
    text = _TAG_RE.sub('', text)
    return text.replace('–', '-').replace('—', '-').replace('…', '...').strip()


def safe_filename(title, suffix):
    return f"{_FILENAME_RE.sub('_', str(title or 'export'))}_{suffix}"


def remark_for(percentage):
    if percentage >= 100:
        return 'Perfect Score! Outstanding!'
    if percentage >= 90:
        return 'Excellent Performance!'
    if percentage >= 70:
        return 'Great Job!'
    if percentage >= 50:
        return 'Good Effort'
    return 'Keep Practicing'


def build_result_summary(result, quiz, student_name):
    """Totals and per-subject rows for a submitted attempt."""
    selected_questions = quiz.get('selectedQuestions') or []
    answers = result.get('answers') or {}
    _, total, question_results = quiz_rules.score_submission(selected_questions, answers, result.get('timeLogs') or {})

    correct = sum(1 for item in question_results if item['isCorrect'])
    skipped = sum(1 for item in question_results if not item['answered'] and not item['isCorrect'])
    subjects = {}
    for item in question_results:
        row = subjects.setdefault(item['subject'] or 'General', {'total': 0, 'correct': 0, 'wrong': 0})
        row['total'] += 1
        if item['isCorrect']:
            row['correct'] += 1
        elif item['answered']:
            row['wrong'] += 1
    subject_stats = [
        {
            'subject': subject,
            'total': row['total'],
            'correct': row['correct'],
            'wrong': row['wrong'],
            'percentage': (row['correct'] / row['total'] * 100.0) if row['total'] else 0.0,
        }
        for subject, row in sorted(subjects.items())
    ]
    percentage = (correct / total * 100.0) if total else 0.0
    return {
        'title': result.get('title') or quiz.get('title') or 'Quiz',
        'studentName': student_name or 'Student',
        'totalQuestions': total,
        'score': correct,
        'wrongAnswers': total - correct - skipped,
        'skippedQuestions': skipped,
        'percentage': percentage,
        'remark': remark_for(percentage),
        'subjectStats': subject_stats,
    }


def _require_reportlab():
    if not REPORTLAB_AVAILABLE:
        raise RuntimeError(
            "PDF export requires the optional 'reportlab' dependency. "
            "Install it with: pip install reportlab"
        )


def _pdf_styles():
    base_styles = getSampleStyleSheet()
    return {
        'pdfTitle': ParagraphStyle(
            'PdfTitle',
            parent=base_styles['Heading1'],
            fontName='Helvetica-Bold',
            fontSize=17,
            leading=21,
            spaceAfter=4,
            textColor=colors.HexColor('#1E293B'),
        ),
        'pdfMeta': ParagraphStyle(
            'PdfMeta',
            parent=base_styles['BodyText'],
            fontName='Helvetica',
            fontSize=9.5,
            leading=12.5,
            textColor=colors.HexColor('#64748B'),
        ),
        'pdfSection': ParagraphStyle(
            'PdfSection',
            parent=base_styles['Heading2'],
            fontName='Helvetica-Bold',
            fontSize=13,
            leading=16,
            spaceBefore=8,
            spaceAfter=6,
            textColor=colors.HexColor('#1E293B'),
        ),
        'pdfRemark': ParagraphStyle(
            'PdfRemark',
            parent=base_styles['Heading2'],
            fontName='Helvetica-Bold',
            fontSize=15,
            leading=19,
            textColor=colors.HexColor('#2563EB'),
        ),
        'pdfBody': ParagraphStyle(
            'PdfBody',
            parent=base_styles['BodyText'],
            fontName='Helvetica',
            fontSize=9.5,
            leading=13,
            textColor=colors.HexColor('#111827'),
        ),
        'pdfQuestion': ParagraphStyle(
            'PdfQuestion',
            parent=base_styles['BodyText'],
            fontName='Helvetica-Bold',
            fontSize=10,
            leading=13.5,
            textColor=colors.HexColor('#111827'),
        ),
        'pdfOption': ParagraphStyle(
            'PdfOption',
            parent=base_styles['BodyText'],
            fontName='Helvetica',
            fontSize=9.5,
            leading=12.5,
            leftIndent=10,
            textColor=colors.HexColor('#1F2937'),
        ),
        'pdfOptionCorrect': ParagraphStyle(
            'PdfOptionCorrect',
            parent=base_styles['BodyText'],
            fontName='Helvetica-Bold',
            fontSize=9.5,
            leading=12.5,
            leftIndent=10,
            textColor=colors.HexColor('#065F46'),
        ),
    }


def _new_pdf(buffer, title):
    return SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=16 * mm,
        rightMargin=16 * mm,
        topMargin=14 * mm,
        bottomMargin=14 * mm,
        title=title,
    )


def build_result_card_pdf(summary, now_ts):
    _require_reportlab()
    pdf_buffer = io.BytesIO()
    doc = _new_pdf(pdf_buffer, f"{summary['title']} - Result Card")
    styles = _pdf_styles()
    date_text = datetime.fromtimestamp(now_ts, tz=timezone.utc).strftime('%Y-%m-%d')

    story = [
        Paragraph(escape(f"{summary['title']} - Result Card"), styles['pdfTitle']),
        Paragraph(escape(f"Student: {summary['studentName']} | Date: {date_text}"), styles['pdfMeta']),
        Spacer(1, 10),
    ]

    overview = Table(
        [
            ['Total Questions', 'Correct', 'Wrong', 'Skipped', 'Score %'],
            [
                summary['totalQuestions'],
                summary['score'],
                summary['wrongAnswers'],
                summary['skippedQuestions'],
                f"{summary['percentage']:.1f}%",
            ],
        ],
        colWidths=[36 * mm] * 5,
        hAlign='LEFT',
    )
    overview.setStyle(TableStyle([
        ('GRID', (0, 0), (-1, -1), 0.35, colors.HexColor('#D1D5DB')),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#2563EB')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('TOPPADDING', (0, 0), (-1, -1), 5),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
    ]))
    story.append(overview)

    story.append(Paragraph('Subject Analysis', styles['pdfSection']))
    subject_rows = [['Subject', 'Total', 'Correct', 'Wrong', 'Percentage']]
    for row in summary['subjectStats']:
        subject_rows.append([row['subject'], row['total'], row['correct'], row['wrong'], f"{row['percentage']:.1f}%"])
    subject_table = Table(subject_rows, colWidths=[56 * mm, 31 * mm, 31 * mm, 31 * mm, 31 * mm], repeatRows=1, hAlign='LEFT')
    subject_table.setStyle(TableStyle([
        ('GRID', (0, 0), (-1, -1), 0.35, colors.HexColor('#D1D5DB')),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4F46E5')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F3F4F6')]),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TOPPADDING', (0, 0), (-1, -1), 4),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]))
    story.append(subject_table)
    story.append(Spacer(1, 14))
    story.append(Paragraph(escape(f"Performance Remark: {summary['remark']}"), styles['pdfRemark']))

    doc.build(story)
    pdf_buffer.seek(0)
    return pdf_buffer


def build_questions_pdf(title, questions, include_answers=True):
    _require_reportlab()
    pdf_buffer = io.BytesIO()
    doc = _new_pdf(pdf_buffer, title)
    styles = _pdf_styles()
    story = [Paragraph(escape(title), styles['pdfTitle']), Spacer(1, 6)]
    if not questions:
        story.append(Paragraph('No questions available.', styles['pdfBody']))
    for idx, question in enumerate(questions, 1):
        question_text = plain_text(question.get('questionText')) or f'Question {idx}'
        story.append(Paragraph(f"{idx}. {escape(question_text)}", styles['pdfQuestion']))
        answer = plain_text(question.get('correctAnswer'))
        for option_idx, option in enumerate((question.get('options') or [])[:len(OPTION_LETTERS)]):
            option_text = plain_text(option)
            is_correct = include_answers and option_text != '' and option_text == answer
            marker = '✓' if is_correct else '•'
            option_style = styles['pdfOptionCorrect'] if is_correct else styles['pdfOption']
            story.append(Paragraph(f"{marker} {OPTION_LETTERS[option_idx]}. {escape(option_text)}", option_style))
        explanation = plain_text(question.get('explanation'))
        if include_answers and explanation:
            story.append(Paragraph(f"<b>Explanation:</b> {escape(explanation)}", styles['pdfBody']))
        story.append(Spacer(1, 7))
    doc.build(story)
    pdf_buffer.seek(0)
    return pdf_buffer


def build_questions_docx(title, questions, include_answers=True):
    doc = Document()
    style = doc.styles['Normal']
    style.font.name = 'Calibri'
    style.font.size = Pt(11)
    doc.add_heading(title, level=1)
    if not questions:
        doc.add_paragraph('No questions available.')
    for idx, question in enumerate(questions, 1):
        paragraph = doc.add_paragraph()
        run = paragraph.add_run(f"{idx}. {plain_text(question.get('questionText')) or f'Question {idx}'}")
        run.bold = True
        answer = plain_text(question.get('correctAnswer'))
        for option_idx, option in enumerate((question.get('options') or [])[:len(OPTION_LETTERS)]):
            option_text = plain_text(option)
            option_paragraph = doc.add_paragraph(style='List Bullet')
            option_run = option_paragraph.add_run(f"{OPTION_LETTERS[option_idx]}. {option_text}")
            if include_answers and option_text and option_text == answer:
                option_run.bold = True
        explanation = plain_text(question.get('explanation'))
        if include_answers and explanation:
            explanation_paragraph = doc.add_paragraph()
            label = explanation_paragraph.add_run('Explanation: ')
            label.bold = True
            explanation_paragraph.add_run(explanation)
    docx_io = io.BytesIO()
    doc.save(docx_io)
    docx_io.seek(0)
    return docx_io
