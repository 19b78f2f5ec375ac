import copy
import os
import tempfile
from datetime import date

import pytest
from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.table import Table

from timesheet_converter import workbook_io
from timesheet_converter.config import DEFAULT_CONFIG, Identity, build_layout
from timesheet_converter.errors import LookupTablesMissingError, NoActiveSheetError, WorkbookLockedError
from timesheet_converter.records import assemble
from timesheet_converter.unpivot import TimeEntry
from timesheet_converter.workbook_io import (
    find_lookups_sheet,
    load_raw_table,
    save_workbook,
    write_timesheet,
)


def _add_lookup_table(ws, name, top_left_col, headers, rows):
    for r, values in enumerate([headers] + rows, start=1):
        for c, value in enumerate(values):
            ws.cell(row=r, column=top_left_col + c, value=value)
    first = ws.cell(row=1, column=top_left_col).coordinate
    last = ws.cell(row=len(rows) + 1, column=top_left_col + len(headers) - 1).coordinate
    ws.add_table(Table(displayName=name, ref=f'{first}:{last}'))


def add_lookups_sheet(wb, title='LOOKUPS'):
    ws = wb.create_sheet(title)
    _add_lookup_table(ws, 'ProjectLookup', 1, ['Number', 'Description'], [[123456, 'Bridge survey']])
    _add_lookup_table(ws, 'TaskCodes', 4, ['123456 Codes', '123456 Desc'], [['T01', 'Design']])
    _add_lookup_table(ws, 'JobCodes', 7, ['Job Code', 'Description'], [['ENC', 'Engineering']])
    return ws


def _timesheet():
    entries = [
        TimeEntry(date(2024, 7, 2), '123456', 'Report', 2.0, 'ABC123456', 'Design', ''),
        TimeEntry(date(2024, 7, 1), 'XY', '', 1.5, 'XY', '', ''),
    ]
    return assemble(entries, Identity(employee_number=1042, employee_name='Jane Doe'))


def _config():
    return copy.deepcopy(DEFAULT_CONFIG)


def test_load_raw_table_active_sheet_and_trailing_rows():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'export.xlsx')
        wb = Workbook()
        ws = wb.active
        ws.title = 'Export'
        ws.append(['Tag 1', 'Notes', 45474])
        ws.append(['ABC123456', 'x', 2])
        ws.cell(row=6, column=1, value='   ')
        wb.create_sheet('Other')
        wb.save(path)
        wb.close()

        rows = load_raw_table(path)
        assert rows == [['Tag 1', 'Notes', 45474], ['ABC123456', 'x', 2]]


def test_load_raw_table_fills_merged_cells():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'export.xlsx')
        wb = Workbook()
        ws = wb.active
        ws.append(['Tag 1', 'Tag 2', 45474])
        ws.append(['ABC123456', 'Design', 2])
        ws.merge_cells('B1:B2')
        wb.save(path)
        wb.close()

        rows = load_raw_table(path)
        assert rows[1][1] == 'Tag 2'


def test_load_raw_table_unknown_sheet():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'export.xlsx')
        wb = Workbook()
        wb.save(path)
        wb.close()
        with pytest.raises(NoActiveSheetError):
            load_raw_table(path, 'Missing')


def test_find_lookups_sheet_required():
    wb = Workbook()
    with pytest.raises(LookupTablesMissingError):
        find_lookups_sheet(wb, _config()['lookups'])
    ws = wb.create_sheet('LOOKUPS')
    with pytest.raises(LookupTablesMissingError, match='ProjectLookup'):
        find_lookups_sheet(wb, _config()['lookups'])
    lookups = dict(_config()['lookups'], required=False)
    assert find_lookups_sheet(wb, lookups) is ws


def test_write_timesheet_layout():
    wb = Workbook()
    wb.active.title = 'Export'
    add_lookups_sheet(wb)
    config = _config()
    ws = write_timesheet(wb, _timesheet(), build_layout(config), config)

    assert ws.title == 'July 2024'
    assert wb.sheetnames == ['Export', 'July 2024', 'LOOKUPS']
    assert wb.active is ws
    assert ws['A1'].value == 'July 2024'
    assert ws['B4'].value == 'Employee Number'
    assert ws['W4'].value == 'Tag 3'
    # Rows are sorted: 2024-07-01 (XY) first
    assert ws['E5'].value == 'XY'
    assert ws['E6'].value == 123456
    assert ws['D5'].number_format == 'yyyy-mm-dd'
    assert ws['K5'].number_format == '0.00'
    assert ws['K6'].value == 2.0
    assert ws['F5'].value.startswith('=IFERROR(_xlfn.XLOOKUP(')
    assert ws['U5'].value == '=TRUE'
    assert ws['U6'].value.startswith('=IF(')
    table = ws.tables['TimesheetData_07_2024']
    assert table.ref == 'B4:W6'


def test_write_timesheet_recreates_existing_sheet():
    wb = Workbook()
    add_lookups_sheet(wb)
    stale = wb.create_sheet('July 2024')
    stale['Z99'] = 'stale'
    config = _config()
    layout = build_layout(config)
    write_timesheet(wb, _timesheet(), layout, config)
    ws = write_timesheet(wb, _timesheet(), layout, config)
    assert ws['Z99'].value is None
    assert wb.sheetnames.count('July 2024') == 1
    assert wb.sheetnames.index('July 2024') == wb.sheetnames.index('LOOKUPS') - 1


def test_write_timesheet_round_trips_through_save():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'out.xlsx')
        wb = Workbook()
        add_lookups_sheet(wb)
        config = _config()
        write_timesheet(wb, _timesheet(), build_layout(config), config)
        save_workbook(wb, path)
        wb.close()

        wb2 = load_workbook(path)
        assert 'TimesheetData_07_2024' in wb2['July 2024'].tables
        wb2.close()


def test_save_workbook_locked(monkeypatch):
    wb = Workbook()
    calls = []

    def locked_save(path):
        calls.append(path)
        raise PermissionError('locked')

    monkeypatch.setattr(wb, 'save', locked_save)
    monkeypatch.setattr(workbook_io, 'sleep', lambda seconds: None)
    with pytest.raises(WorkbookLockedError):
        save_workbook(wb, 'locked.xlsx')
    assert calls == ['locked.xlsx', 'locked.xlsx']
