from clientdesk.excel.reader import ParseResult, parse_spreadsheet
from clientdesk.excel.upload import upload_file

__all__ = ["ParseResult", "parse_spreadsheet", "upload_file"]
