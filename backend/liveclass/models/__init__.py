from liveclass.models.meeting import Meeting, MeetingStatus
from liveclass.models.attendance import AttendanceRecord, AttendanceSession, AttendanceStatus
from liveclass.models.emotion import EmotionSample
