#!/usr/bin/env python

import json
import queue
import sys

from eventlens.comm import Client, LoopThread
from eventlens.model import EventKey, RawRecord, RecordSerializer
from eventlens.planner import partition_for

# usage: publish_client.py <topic> <stream id>
topic, stream_id = sys.argv[1], sys.argv[2]

loop_thread = LoopThread().start()
responses = queue.Queue()

cl = Client(loop_thread.loop, host='localhost', port=6434, path='/publish/%s' % topic, recv=responses.put)
cl.connect()

serializer = RecordSerializer()
seq = 0
try:
    while True:
        msg = input('>')
        seq += 1
        record = RawRecord(key=EventKey(stream_id, partition_for(seq), seq), serializer_id=3,
                           manifest='repl.Message', payload=json.dumps({'text': msg}).encode('utf-8'))
        cl.send(serializer.serialize(record))
        print(' >>%s #%d: %s' % (stream_id, seq, responses.get(timeout=10)))
except (EOFError, KeyboardInterrupt):
    pass
finally:
    cl.close()
    loop_thread.stop()
