BLOCKED_HTML = """<!DOCTYPE html>
<html lang="ko">
<head>
  <meta charset="UTF-8" />
  <title>접근 불가</title>
  <style>
    body { font-family: sans-serif; display: flex; align-items: center;
           justify-content: center; height: 100vh; margin: 0; background: #0f0f0f; color: #fff; }
    .box { text-align: center; }
    h1 { font-size: 3rem; margin-bottom: 0.5rem; }
    p  { color: #888; }
  </style>
</head>
<body>
  <div class="box">
    <h1>403</h1>
    <p>현재 테스트 기간으로 허가된 IP만 접속할 수 있습니다.</p>
  </div>
</body>
</html>"""

ACCESS_HTML = """<!DOCTYPE html>
<html lang="ko">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>NEXINOUS - 접근 코드</title>
  <link rel="stylesheet" href="/static/style.css" />
</head>
<body class="access">
  <main class="access-box">
    <div class="logo">N</div>
    <h1>NEXINOUS</h1>
    <p class="muted">테스트 접근 코드를 입력해주세요</p>
    <form id="access-form" autocomplete="off">
      <input id="code" type="text" maxlength="20" placeholder="초대 코드 입력 (예: NEXIN-A3X9)"
             spellcheck="false" autofocus />
      <p id="error" class="error" hidden></p>
      <button id="submit" type="submit">입장하기</button>
    </form>
  </main>
  <script src="/static/access.js"></script>
</body>
</html>"""

HOME_HTML = """<!DOCTYPE html>
<html lang="ko">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>NEXINOUS AI Chat</title>
  <link rel="stylesheet" href="/static/style.css" />
</head>
<body class="chat">
  <aside class="sidebar">
    <button id="new-conversation" type="button">새 대화 시작하기</button>
    <ul id="conversations"></ul>
    <button id="logout" type="button" class="link">로그아웃</button>
  </aside>
  <main class="chat-main">
    <header><h1>NEXINOUS AI Chat</h1></header>
    <section id="messages"></section>
    <p id="chat-error" class="error" hidden></p>
    <form id="composer">
      <textarea id="input" rows="2" placeholder="메시지를 입력하세요"></textarea>
      <button id="send" type="submit">전송</button>
    </form>
  </main>
  <script src="/static/chat.js"></script>
</body>
</html>"""
